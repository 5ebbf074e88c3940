"""Field ownership policies and document merging."""

from .merge import FieldPolicy, compute_object_to_persist, merge_maps, merge_maps_with_deletion

__all__ = ["FieldPolicy", "compute_object_to_persist", "merge_maps", "merge_maps_with_deletion"]
