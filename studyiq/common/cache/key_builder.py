"""
Cache key construction.

Keys are colon-separated: ``[namespace:]entity:id[:subresource]``. A trailing
colon on prefixes keeps ``user:u1`` from matching ``user:u10`` during bulk
invalidation.
"""

from typing import Optional, Union

SEPARATOR = ":"


class KeyBuilder:
    """Builds the keys shared by every cache user."""

    @staticmethod
    def build(*parts: Union[str, int, None], namespace: Optional[str] = None) -> str:
        """
        Join parts into a key; ``None`` parts are written as ``null``.

        Args:
            *parts: Key segments
            namespace: Optional leading namespace segment
        """
        segments = [namespace] if namespace else []
        segments.extend("null" if part is None else str(part) for part in parts)
        return SEPARATOR.join(segments)

    @staticmethod
    def entity_key(entity_type: str, entity_id: Union[str, int],
                   subresource: Optional[str] = None, namespace: Optional[str] = None) -> str:
        """
        Key of one entity, or of a sub-resource derived from it.

        Args:
            entity_type: Kind of entity, e.g. ``performance``
            entity_id: Id of the entity
            subresource: Optional derived value stored alongside the entity
            namespace: Optional namespace, e.g. ``analytics``
        """
        parts = [entity_type, entity_id]
        if subresource:
            parts.append(subresource)
        return KeyBuilder.build(*parts, namespace=namespace)

    @staticmethod
    def entity_prefix(entity_type: str, entity_id: Union[str, int], namespace: Optional[str] = None) -> str:
        """Prefix matching every sub-resource key of one entity."""
        return KeyBuilder.build(entity_type, entity_id, namespace=namespace) + SEPARATOR
