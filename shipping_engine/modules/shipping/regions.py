"""
Region code normalization

Carriers require the destination state as a 2-character ISO 3166-2 code.
Checkout forms collect whatever the customer typed: full names, names with or
without accents, local abbreviations ("CDMX", "DF").
"""
import logging

logger = logging.getLogger(__name__)

MEXICO_STATES_MAP = {
    "aguascalientes": "AG",
    "baja california": "BC",
    "baja california sur": "BS",
    "campeche": "CM",
    "chiapas": "CS",
    "chihuahua": "CH",
    "coahuila": "CO",
    "colima": "CL",
    "ciudad de mexico": "DF",
    "ciudad de méxico": "DF",
    "cdmx": "DF",
    "df": "DF",
    "distrito federal": "DF",
    "durango": "DG",
    "guanajuato": "GT",
    "guerrero": "GR",
    "hidalgo": "HG",
    "jalisco": "JA",
    "estado de mexico": "EM",
    "estado de méxico": "EM",
    "mexico": "EM",
    "méxico": "EM",
    "michoacan": "MI",
    "michoacán": "MI",
    "morelos": "MO",
    "nayarit": "NA",
    "nuevo leon": "NL",
    "nuevo león": "NL",
    "oaxaca": "OA",
    "puebla": "PU",
    "queretaro": "QT",
    "querétaro": "QT",
    "quintana roo": "QR",
    "san luis potosi": "SL",
    "san luis potosí": "SL",
    "sinaloa": "SI",
    "sonora": "SO",
    "tabasco": "TB",
    "tamaulipas": "TM",
    "tlaxcala": "TL",
    "veracruz": "VE",
    "yucatan": "YU",
    "yucatán": "YU",
    "zacatecas": "ZA",
}

VALID_REGION_CODES = frozenset(MEXICO_STATES_MAP.values())


def normalize_region_code(state: str) -> str:
    """
    Normalize a state name or code to its 2-character code.

    Unmapped input falls back to its first two characters upper-cased. That
    fallback can produce a wrong but valid-looking code; it is logged.
    """
    if not state:
        return ""

    normalized = state.strip().lower()

    if len(normalized) == 2 and normalized.upper() in VALID_REGION_CODES:
        return normalized.upper()

    if normalized in MEXICO_STATES_MAP:
        return MEXICO_STATES_MAP[normalized]

    logger.warning(f"Unrecognised state {state!r}, using first two characters")
    return state.strip()[:2].upper()
