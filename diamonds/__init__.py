"""Diamond deployment orchestration.

Reconciles a declared facet configuration against the recorded on-chain state of a
diamond proxy, plans the add/replace/remove cut, and drives the deployment phases
through either a direct signer or an external approval service.
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.3.0"
