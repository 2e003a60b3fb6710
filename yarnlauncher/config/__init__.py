from .config import (
    InvalidSettings,
    LauncherConfig,
    Settings,
    get_class_path,
    import_string,
)

__all__ = ["InvalidSettings", "LauncherConfig", "Settings", "get_class_path", "import_string"]
