"""
cursor-kit - Serverless transfer of AI-IDE config directories

Share `.cursor`, `.agent` and `.github` configs from one machine and
receive them on another, over the LAN or through a tunnel.
"""

__version__ = "1.0.0"
