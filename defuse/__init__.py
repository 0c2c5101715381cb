"""Static def-use dataflow edges for Python programs."""

from .cfg_extractor import CFGBlock, CFGEdge, CFGInfo, extract_python_cfg
from .dfg_extractor import (
    Dataflow,
    DataflowAnalyzer,
    DataflowInfo,
    DefLevel,
    DefType,
    Definition,
    DefUseInfo,
    SymbolTable,
    Use,
    dataflow_analysis,
    extract_python_dataflow,
    get_defs,
    get_defs_uses,
    get_uses,
)
from .locations import Location, loc_string, location_of
from .slicer_config import FunctionConfig, SlicerConfig, SlicerConfigError

__version__ = "0.1.0"
