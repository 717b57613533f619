from . import graph, mapping
from .graph import Device, Identity
from .mapping import MappingRecord, MappingState
from .model import BaseModel, json_default
