class GeometryError(ValueError):
    """Raised when a geometry or an operator violates a structural precondition."""
