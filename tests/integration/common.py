import shutil


def has_assimp() -> bool:
    """Check if the Assimp command line tool is available for FBX conversion."""
    return shutil.which("assimp") is not None
