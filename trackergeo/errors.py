class ExtractionError(Exception):
    """Base class for errors raised while extracting the tracker geometry"""


class MaterialAssignmentError(ExtractionError, ValueError):
    """A module material entry cannot be assigned to a hybrid sub-volume"""

    def __init__(self, message, element=None, target=None):
        super().__init__(message)
        self.element = element
        self.target = target


class SensorMaterialError(MaterialAssignmentError):
    """Sensor material found where only structural material is expected"""


class UnknownTargetVolumeError(MaterialAssignmentError):
    """Material entry targets a volume id outside the supported set"""


class DuplicateRecordError(ExtractionError, KeyError):
    """Two output records were given the same name"""

    def __init__(self, collection, name):
        super().__init__(f"Duplicate {collection} record: {name}")
        self.collection = collection
        self.name = name

    def __str__(self):
        return self.args[0]


class UnknownModuleTypeError(ExtractionError, ValueError):
    """Module type tag has no active-surface naming rule"""

    def __init__(self, module_type):
        super().__init__(f"Unknown module type : {module_type}")
        self.module_type = module_type
