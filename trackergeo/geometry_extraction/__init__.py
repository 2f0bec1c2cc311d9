from .extractor import Extractor, extract
from .records import RecordCollector
