"""stakerelay - gasless staking relay and chain data service."""

__version__ = "1.0.0"
