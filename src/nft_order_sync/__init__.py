"""NFT order sync - marketplace listings and Seaport events in one order store."""

__version__ = "0.1.0"
