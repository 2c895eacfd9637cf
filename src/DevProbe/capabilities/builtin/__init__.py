"""Built-in capability definitions, one module per task category."""

from DevProbe.capabilities.builtin.build import BUILD_CAPABILITIES
from DevProbe.capabilities.builtin.docs import DOCS_CAPABILITIES
from DevProbe.capabilities.builtin.profiling import PROFILING_CAPABILITIES
from DevProbe.capabilities.builtin.project import PROJECT_CAPABILITIES
from DevProbe.capabilities.builtin.simulator import SIMULATOR_CAPABILITIES
from DevProbe.capabilities.builtin.ui import UI_CAPABILITIES

ALL_CAPABILITIES = (
    *PROJECT_CAPABILITIES,
    *DOCS_CAPABILITIES,
    *BUILD_CAPABILITIES,
    *PROFILING_CAPABILITIES,
    *SIMULATOR_CAPABILITIES,
    *UI_CAPABILITIES,
)

__all__ = ["ALL_CAPABILITIES"]
