"""IPv4, ARP and TCP packet handling, socket argument parsing and TCP protocol state."""

__version__ = "0.1.0"