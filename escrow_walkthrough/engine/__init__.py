from escrow_walkthrough.engine.executor import ActionResult, Walkthrough, load_catalog

__all__ = ["ActionResult", "Walkthrough", "load_catalog"]
