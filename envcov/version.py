# envcov/version.py
"""
envcov version information

Version metadata accessible programmatically via ``envcov.__version__``.
The package follows semantic versioning (MAJOR.MINOR.PATCH).
"""

from typing import Dict

VERSION_MAJOR = 1
VERSION_MINOR = 0
VERSION_PATCH = 0

__version__ = f"{VERSION_MAJOR}.{VERSION_MINOR}.{VERSION_PATCH}"

__title__ = "envcov"
__description__ = "Environmental covariance estimation for age-structured vital rates"
__license__ = "MIT"

__python_requires__ = ">=3.10"

__dependencies__ = {
    "numpy": ">=1.26.0",
    "scipy": ">=1.11.3",
    "pandas": ">=2.1.1",
    "numba": ">=0.58.0",
    "statsmodels": ">=0.14.0",
}


def get_version_info() -> Dict[str, object]:
    """Version string, components and dependency pins as a dictionary."""
    return {
        "version": __version__,
        "major": VERSION_MAJOR,
        "minor": VERSION_MINOR,
        "patch": VERSION_PATCH,
        "python_requires": __python_requires__,
        "dependencies": dict(__dependencies__),
    }
