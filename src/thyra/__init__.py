"""
Thyra — permanent storage with capability links.

Encrypt content locally, store it as a signed, tagged record on
Arweave, and share it through a link whose fragment carries the only
key that can open it. The server that hosts the link never sees it.
"""

import os

__version__ = "1.0.0"
__author__ = "Thyra contributors"

THYRA_HOME = os.environ.get("THYRA_HOME", "~/.thyra")
