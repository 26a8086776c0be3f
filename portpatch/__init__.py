"""portpatch: transactional patching of ports-tree sources."""

__version__ = "0.1.0"
