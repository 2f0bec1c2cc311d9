"""
Serialize extraction records into a DDD-style XML geometry description.
"""

import xml.etree.ElementTree as ET
from pathlib import Path

from .records import RecordCollector, ShapeType


DDD_XMLNS = "http://www.cern.ch/cms/DDL"


def _num(value, unit=""):
    text = f"{float(value):.10g}"
    return f"{text}*{unit}" if unit else text


def _mm(value):
    return _num(value, "mm")


def _deg(value):
    return _num(value, "deg")


def _material_section(root, records: RecordCollector, namespace):
    section = ET.SubElement(root, "MaterialSection", label=f"{namespace}.xml")
    for element in records.elements:
        ET.SubElement(section, "ElementaryMaterial", name=element.tag, density=_num(element.density, "g/cm3"),
                      symbol=" ", atomicWeight=_num(element.atomic_weight, "g/mole"),
                      atomicNumber=str(element.atomic_number))
    for composite in records.composites:
        comp = ET.SubElement(section, "CompositeMaterial", name=composite.name,
                             density=_num(composite.density, "g/cm3"), symbol=" ", method=composite.method)
        for tag, fraction in composite.elements:
            frac = ET.SubElement(comp, "MaterialFraction", fraction=_num(fraction))
            ET.SubElement(frac, "rMaterial", name=f"{namespace}:{tag}")


def _rotation_section(root, records: RecordCollector, namespace):
    section = ET.SubElement(root, "RotationSection", label=f"{namespace}.xml")
    for rot in records.rotations.values():
        ET.SubElement(section, "Rotation", name=rot.name,
                      thetaX=_deg(rot.theta_x), phiX=_deg(rot.phi_x),
                      thetaY=_deg(rot.theta_y), phiY=_deg(rot.phi_y),
                      thetaZ=_deg(rot.theta_z), phiZ=_deg(rot.phi_z))


def _solid_section(root, records: RecordCollector, namespace):
    section = ET.SubElement(root, "SolidSection", label=f"{namespace}.xml")
    for shape in records.shapes:
        if shape.type is ShapeType.BOX:
            ET.SubElement(section, "Box", name=shape.name, dx=_mm(shape.dx), dy=_mm(shape.dy), dz=_mm(shape.dz))
        elif shape.type is ShapeType.TRAPEZOID:
            ET.SubElement(section, "Trd1", name=shape.name, dx1=_mm(shape.dx), dx2=_mm(shape.dxx),
                          dy1=_mm(shape.dy), dy2=_mm(shape.dyy), dz=_mm(shape.dz))
        elif shape.type is ShapeType.TUBE:
            ET.SubElement(section, "Tubs", name=shape.name, rMin=_mm(shape.rmin), rMax=_mm(shape.rmax),
                          dz=_mm(shape.dz), startPhi=_deg(0), deltaPhi=_deg(360))
        elif shape.type is ShapeType.CONE:
            ET.SubElement(section, "Cone", name=shape.name, dz=_mm(shape.dz),
                          rMin1=_mm(shape.rmin1), rMax1=_mm(shape.rmax1),
                          rMin2=_mm(shape.rmin2), rMax2=_mm(shape.rmax2),
                          startPhi=_deg(0), deltaPhi=_deg(360))
        elif shape.type is ShapeType.POLYCONE:
            poly = ET.SubElement(section, "Polycone", name=shape.name, startPhi=_deg(0), deltaPhi=_deg(360))
            # closed outline: up as given, down walked back
            for r, z in list(shape.rz_up) + list(reversed(shape.rz_down)):
                ET.SubElement(poly, "RZPoint", r=_mm(r), z=_mm(z))
        elif shape.type is ShapeType.INTERSECTION:
            solid = ET.SubElement(section, "IntersectionSolid", name=shape.name)
            ET.SubElement(solid, "rSolid", name=shape.solid1)
            ET.SubElement(solid, "rSolid", name=shape.solid2)
            ET.SubElement(solid, "Translation", x=_mm(0), y=_mm(0), z=_mm(0))
        else:
            raise ValueError(f"Shape {shape.name} has unsupported type {shape.type}")


def _logical_section(root, records: RecordCollector, namespace):
    section = ET.SubElement(root, "LogicalPartSection", label=f"{namespace}.xml")
    for logic in records.logical_volumes:
        part = ET.SubElement(section, "LogicalPart", name=logic.name, category="unspecified")
        ET.SubElement(part, "rSolid", name=logic.shape)
        ET.SubElement(part, "rMaterial", name=logic.material)


def _pos_part_section(root, records: RecordCollector, namespace):
    section = ET.SubElement(root, "PosPartSection", label=f"{namespace}.xml")
    for placement in records.placements:
        pos = ET.SubElement(section, "PosPart", copyNumber=str(placement.copy))
        ET.SubElement(pos, "rParent", name=placement.parent)
        ET.SubElement(pos, "rChild", name=placement.child)
        if placement.rotation:
            ET.SubElement(pos, "rRotation", name=placement.rotation)
        x, y, z = placement.translation
        if x or y or z:
            ET.SubElement(pos, "Translation", x=_mm(x), y=_mm(y), z=_mm(z))
    for algo in records.algorithms:
        node = ET.SubElement(section, "Algorithm", name=algo.name)
        ET.SubElement(node, "rParent", name=algo.parent)
        for param in algo.parameters:
            if param.kind == "string":
                ET.SubElement(node, "String", name=param.name, value=str(param.value))
            elif param.kind == "vector":
                vec = ET.SubElement(node, "Vector", name=param.name, type="numeric", nEntries="3")
                vec.text = ",".join(_num(v) for v in param.value)
            else:
                ET.SubElement(node, "Numeric", name=param.name, value=_num(param.value, param.unit))


def _spec_par_section(root, records: RecordCollector, namespace):
    section = ET.SubElement(root, "SpecParSection", label="spec-pars2.xml")
    for selector in records.selectors:
        spec = ET.SubElement(section, "SpecPar", name=selector.name)
        for part, roc in zip(selector.part_selectors, selector.module_types):
            ET.SubElement(spec, "PartSelector", path=f"//{namespace}:{part}")
            if roc.name:
                ET.SubElement(spec, "Parameter", name="ModuleType", value=roc.name)
                ET.SubElement(spec, "Parameter", name="ROCRows", value=str(roc.roc_rows))
                ET.SubElement(spec, "Parameter", name="ROCCols", value=str(roc.roc_cols))
                ET.SubElement(spec, "Parameter", name="ROC_X", value=str(roc.roc_x))
                ET.SubElement(spec, "Parameter", name="ROC_Y", value=str(roc.roc_y))
        key, value = selector.parameter
        ET.SubElement(spec, "Parameter", name=key, value=value)


def build_ddd_tree(records: RecordCollector, namespace="tracker") -> ET.ElementTree:
    """
    Build the XML tree of a record bundle.

    Parameters:
    -----------
    records : RecordCollector
        Merged output of an extraction
    namespace : str
        Namespace of the generated volumes, used to qualify material fractions
        and part selectors
    """
    root = ET.Element("DDDefinition", xmlns=DDD_XMLNS)
    _material_section(root, records, namespace)
    _rotation_section(root, records, namespace)
    _solid_section(root, records, namespace)
    _logical_section(root, records, namespace)
    _pos_part_section(root, records, namespace)
    _spec_par_section(root, records, namespace)
    tree = ET.ElementTree(root)
    ET.indent(tree, space="  ")
    return tree


def write_ddd(records: RecordCollector, output_file, namespace="tracker"):
    """Write the XML description of ``records`` to ``output_file``"""
    tree = build_ddd_tree(records, namespace)
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    tree.write(output_file, encoding="utf-8", xml_declaration=True)
    print(f"Geometry description written to {output_file}")
    return output_file
