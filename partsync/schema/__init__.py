"""Catalog workbook schema: sheet names, column headers and field limits.

Shared by the export writer and the import parser so both sides agree on the
exact layout of the workbook.
"""

from typing import Dict, List, Tuple

# Sheet names (must match exactly between export and import)
PARTS_SHEET = "Parts"
VEHICLE_APPLICATIONS_SHEET = "Vehicle Applications"
CROSS_REFERENCES_SHEET = "Cross References"

REQUIRED_SHEETS = [PARTS_SHEET, VEHICLE_APPLICATIONS_SHEET, CROSS_REFERENCES_SHEET]

# Entity keys used in snapshots, summaries and import history payloads
PARTS = "parts"
VEHICLE_APPLICATIONS = "vehicle_applications"
CROSS_REFERENCES = "cross_references"

ENTITY_KEYS = [PARTS, VEHICLE_APPLICATIONS, CROSS_REFERENCES]

ENTITY_SHEETS = {
    PARTS: PARTS_SHEET,
    VEHICLE_APPLICATIONS: VEHICLE_APPLICATIONS_SHEET,
    CROSS_REFERENCES: CROSS_REFERENCES_SHEET,
}

# Column headers as they appear in row 1 of each sheet.
# Tuples are (header, width, hidden).
PARTS_COLUMNS: List[Tuple[str, int, bool]] = [
    ("_id", 36, True),
    ("ACR_SKU", 15, False),
    ("Part_Type", 20, False),
    ("Position_Type", 15, False),
    ("ABS_Type", 15, False),
    ("Bolt_Pattern", 15, False),
    ("Drive_Type", 15, False),
    ("Specifications", 40, False),
]

VEHICLE_APPLICATIONS_COLUMNS: List[Tuple[str, int, bool]] = [
    ("_id", 36, True),
    ("_part_id", 36, True),
    ("ACR_SKU", 15, False),
    ("Make", 15, False),
    ("Model", 20, False),
    ("Start_Year", 12, False),
    ("End_Year", 12, False),
]

CROSS_REFERENCES_COLUMNS: List[Tuple[str, int, bool]] = [
    ("_id", 36, True),
    ("_acr_part_id", 36, True),
    ("ACR_SKU", 15, False),
    ("Competitor_Brand", 20, False),
    ("Competitor_SKU", 20, False),
]

SHEET_COLUMNS = {
    PARTS_SHEET: PARTS_COLUMNS,
    VEHICLE_APPLICATIONS_SHEET: VEHICLE_APPLICATIONS_COLUMNS,
    CROSS_REFERENCES_SHEET: CROSS_REFERENCES_COLUMNS,
}

# Hidden identity columns per sheet (property names)
HIDDEN_IDENTITY_COLUMNS: Dict[str, List[str]] = {
    PARTS_SHEET: ["_id"],
    VEHICLE_APPLICATIONS_SHEET: ["_id", "_part_id"],
    CROSS_REFERENCES_SHEET: ["_id", "_acr_part_id"],
}

ALL_HIDDEN_COLUMNS = {"_id", "_part_id", "_acr_part_id"}

# Property name -> header, for messages that point the administrator at a column
PROPERTY_HEADERS = {
    "_id": "_id",
    "_part_id": "_part_id",
    "_acr_part_id": "_acr_part_id",
    "acr_sku": "ACR_SKU",
    "part_type": "Part_Type",
    "position_type": "Position_Type",
    "abs_type": "ABS_Type",
    "bolt_pattern": "Bolt_Pattern",
    "drive_type": "Drive_Type",
    "specifications": "Specifications",
    "make": "Make",
    "model": "Model",
    "start_year": "Start_Year",
    "end_year": "End_Year",
    "competitor_brand": "Competitor_Brand",
    "competitor_sku": "Competitor_SKU",
}

# Business fields compared by the diff engine, in column order
PART_FIELDS = [
    "acr_sku",
    "part_type",
    "position_type",
    "abs_type",
    "bolt_pattern",
    "drive_type",
    "specifications",
]
VEHICLE_APPLICATION_FIELDS = ["part_id", "make", "model", "start_year", "end_year"]
CROSS_REFERENCE_FIELDS = ["acr_part_id", "competitor_brand", "competitor_sku"]

YEAR_FIELDS = {"start_year", "end_year"}

# Maximum string lengths (mirror the VARCHAR sizes of the store schema)
MAX_LENGTHS = {
    "acr_sku": 50,
    "part_type": 100,
    "position_type": 50,
    "abs_type": 20,
    "bolt_pattern": 50,
    "drive_type": 50,
    "make": 50,
    "model": 50,
    "competitor_brand": 50,
    "competitor_sku": 50,
}

MIN_YEAR = 1900
YEARS_AHEAD = 2

MAX_FILE_SIZE_MB = 50
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024

VALID_EXTENSIONS = [".xlsx", ".xlsm"]


def header_to_property(header: str) -> str:
    """Convert a column header to its row property name.

    Example: "ACR_SKU" -> "acr_sku", "Part__Type" -> "part_type".
    Hidden identity columns keep their leading underscore.
    """
    header = header.strip()
    if header in ALL_HIDDEN_COLUMNS:
        return header

    prop = header.lower()
    while "__" in prop:
        prop = prop.replace("__", "_")
    return prop


__all__ = [
    "PARTS_SHEET",
    "VEHICLE_APPLICATIONS_SHEET",
    "CROSS_REFERENCES_SHEET",
    "REQUIRED_SHEETS",
    "PARTS",
    "VEHICLE_APPLICATIONS",
    "CROSS_REFERENCES",
    "ENTITY_KEYS",
    "ENTITY_SHEETS",
    "SHEET_COLUMNS",
    "HIDDEN_IDENTITY_COLUMNS",
    "PROPERTY_HEADERS",
    "PART_FIELDS",
    "VEHICLE_APPLICATION_FIELDS",
    "CROSS_REFERENCE_FIELDS",
    "YEAR_FIELDS",
    "MAX_LENGTHS",
    "MIN_YEAR",
    "YEARS_AHEAD",
    "MAX_FILE_SIZE_BYTES",
    "header_to_property",
]
