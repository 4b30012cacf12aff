"""patchforge: hermetic builds with pinned, verified dependency overrides.

Fetches pinned fork and patch sources into a content-addressed store,
renders them as a Cargo ``[patch]`` manifest, cross-checks that manifest
against the project's lock description and builds one binary in an
isolated environment.
"""

__version__ = "0.1.0"
__description__ = "Hermetic build orchestrator with pinned, verified dependency overrides"

from patchforge.core.errors import ExitCode, PatchforgeError
from patchforge.core.pipeline import Pipeline, PipelineResult

__all__ = ["Pipeline", "PipelineResult", "ExitCode", "PatchforgeError", "__version__"]
