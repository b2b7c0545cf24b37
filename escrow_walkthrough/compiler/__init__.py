from escrow_walkthrough.compiler.parser import bundled_demos_dir, load_demos, parse_demo_yaml
from escrow_walkthrough.compiler.validator import format_errors, has_errors, validate_demo

__all__ = ["bundled_demos_dir", "format_errors", "has_errors", "load_demos", "parse_demo_yaml", "validate_demo"]
