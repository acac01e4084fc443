# ArrangementMirror/__init__.py


def create_instance(c_instance):
    """Create and return the ArrangementMirror script instance"""
    # Imported here so the engine modules load without Live's _Framework.
    from .surface import ArrangementMirror
    return ArrangementMirror(c_instance)
