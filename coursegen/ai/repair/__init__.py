"""Repair cascade levels."""

from coursegen.ai.repair.cascade import CascadeResult, RepairCascade
from coursegen.ai.repair.coercion import coerce_types
from coursegen.ai.repair.fields import normalize_field_names, to_snake_case

__all__ = ["CascadeResult", "RepairCascade", "coerce_types", "normalize_field_names", "to_snake_case"]
