from __future__ import annotations

import re
import unicodedata
from difflib import get_close_matches
from typing import Dict, Optional, Tuple

COUNTRY_NAMES: Dict[str, str] = {
    "US": "United States",
    "CA": "Canada",
    "MX": "Mexico",
    "GB": "United Kingdom",
    "IE": "Ireland",
    "DE": "Germany",
    "FR": "France",
    "IT": "Italy",
    "ES": "Spain",
    "PT": "Portugal",
    "NL": "Netherlands",
    "BE": "Belgium",
    "CH": "Switzerland",
    "AT": "Austria",
    "AU": "Australia",
    "NZ": "New Zealand",
    "IN": "India",
    "CN": "China",
    "JP": "Japan",
    "KR": "South Korea",
    "BR": "Brazil",
    "AR": "Argentina",
    "ZA": "South Africa",
    "SE": "Sweden",
    "NO": "Norway",
    "DK": "Denmark",
    "FI": "Finland",
    "PL": "Poland",
    "RU": "Russia",
    "SG": "Singapore",
    "HK": "Hong Kong",
    "PH": "Philippines",
    "IL": "Israel",
    "AE": "United Arab Emirates",
}

COUNTRY_ALIASES: Dict[str, str] = {
    "usa": "US",
    "u.s.": "US",
    "u.s.a.": "US",
    "america": "US",
    "united states of america": "US",
    "uk": "GB",
    "u.k.": "GB",
    "great britain": "GB",
    "england": "GB",
    "scotland": "GB",
    "wales": "GB",
    "northern ireland": "GB",
    "republic of ireland": "IE",
    "deutschland": "DE",
    "holland": "NL",
    "czechia": "CZ",
    "czech republic": "CZ",
    "people's republic of china": "CN",
    "prc": "CN",
    "republic of korea": "KR",
    "russian federation": "RU",
    "uae": "AE",
}

ISO2: Dict[str, str] = {
    **{name.lower(): code for code, name in COUNTRY_NAMES.items()},
    **{code.lower(): code for code in COUNTRY_NAMES},
    **COUNTRY_ALIASES,
}

STATE_ABBR: Dict[str, str] = {
    "alabama": "AL",
    "alaska": "AK",
    "arizona": "AZ",
    "arkansas": "AR",
    "california": "CA",
    "colorado": "CO",
    "connecticut": "CT",
    "delaware": "DE",
    "florida": "FL",
    "georgia": "GA",
    "hawaii": "HI",
    "idaho": "ID",
    "illinois": "IL",
    "indiana": "IN",
    "iowa": "IA",
    "kansas": "KS",
    "kentucky": "KY",
    "louisiana": "LA",
    "maine": "ME",
    "maryland": "MD",
    "massachusetts": "MA",
    "michigan": "MI",
    "minnesota": "MN",
    "mississippi": "MS",
    "missouri": "MO",
    "montana": "MT",
    "nebraska": "NE",
    "nevada": "NV",
    "new hampshire": "NH",
    "new jersey": "NJ",
    "new mexico": "NM",
    "new york": "NY",
    "north carolina": "NC",
    "north dakota": "ND",
    "ohio": "OH",
    "oklahoma": "OK",
    "oregon": "OR",
    "pennsylvania": "PA",
    "rhode island": "RI",
    "south carolina": "SC",
    "south dakota": "SD",
    "tennessee": "TN",
    "texas": "TX",
    "utah": "UT",
    "vermont": "VT",
    "virginia": "VA",
    "washington": "WA",
    "west virginia": "WV",
    "wisconsin": "WI",
    "wyoming": "WY",
    "district of columbia": "DC",
    "alberta": "AB",
    "british columbia": "BC",
    "manitoba": "MB",
    "new brunswick": "NB",
    "newfoundland and labrador": "NL",
    "nova scotia": "NS",
    "northwest territories": "NT",
    "nunavut": "NU",
    "ontario": "ON",
    "prince edward island": "PE",
    "quebec": "QC",
    "saskatchewan": "SK",
    "yukon": "YT",
}

STATE_CODES = frozenset(STATE_ABBR.values())

# Informal abbreviations still seen in mailing lists.
STATE_VARIANTS: Dict[str, str] = {
    "ala": "AL",
    "ariz": "AZ",
    "ark": "AR",
    "cal": "CA",
    "calif": "CA",
    "colo": "CO",
    "conn": "CT",
    "del": "DE",
    "fla": "FL",
    "ill": "IL",
    "ind": "IN",
    "kan": "KS",
    "mass": "MA",
    "mich": "MI",
    "minn": "MN",
    "miss": "MS",
    "mont": "MT",
    "neb": "NE",
    "nev": "NV",
    "okla": "OK",
    "ore": "OR",
    "oreg": "OR",
    "penn": "PA",
    "penna": "PA",
    "tenn": "TN",
    "tex": "TX",
    "wash": "WA",
    "wis": "WI",
    "wisc": "WI",
    "wyo": "WY",
}

STREET_TYPES: Dict[str, str] = {
    "street": "St",
    "st": "St",
    "avenue": "Ave",
    "ave": "Ave",
    "road": "Rd",
    "rd": "Rd",
    "boulevard": "Blvd",
    "blvd": "Blvd",
    "drive": "Dr",
    "dr": "Dr",
    "lane": "Ln",
    "ln": "Ln",
    "court": "Ct",
    "ct": "Ct",
    "place": "Pl",
    "pl": "Pl",
    "circle": "Cir",
    "cir": "Cir",
    "parkway": "Pkwy",
    "pkwy": "Pkwy",
    "highway": "Hwy",
    "hwy": "Hwy",
    "square": "Sq",
    "sq": "Sq",
    "terrace": "Ter",
    "ter": "Ter",
    "trail": "Trl",
    "trl": "Trl",
    "way": "Way",
}

UNIT_TYPES: Dict[str, str] = {
    "apartment": "Apt",
    "apt": "Apt",
    "suite": "Ste",
    "ste": "Ste",
    "unit": "Unit",
    "building": "Bldg",
    "bldg": "Bldg",
    "floor": "Fl",
    "fl": "Fl",
    "room": "Rm",
    "rm": "Rm",
    "#": "#",
}

DIRECTIONS: Dict[str, str] = {
    "north": "N",
    "n": "N",
    "south": "S",
    "s": "S",
    "east": "E",
    "e": "E",
    "west": "W",
    "w": "W",
    "northeast": "NE",
    "ne": "NE",
    "northwest": "NW",
    "nw": "NW",
    "southeast": "SE",
    "se": "SE",
    "southwest": "SW",
    "sw": "SW",
}

POSTAL_PATTERNS: Dict[str, "re.Pattern[str]"] = {
    "US": re.compile(r"^\d{5}(-\d{4})?$"),
    "CA": re.compile(r"^[A-Z]\d[A-Z]\s?\d[A-Z]\d$", re.IGNORECASE),
    "GB": re.compile(r"^[A-Z]{1,2}\d[A-Z\d]?\s?\d[A-Z]{2}$", re.IGNORECASE),
    "AU": re.compile(r"^\d{4}$"),
    "DE": re.compile(r"^\d{5}$"),
    "FR": re.compile(r"^\d{5}$"),
    "IT": re.compile(r"^\d{5}$"),
    "ES": re.compile(r"^\d{5}$"),
    "NL": re.compile(r"^\d{4}\s?[A-Z]{2}$", re.IGNORECASE),
    "JP": re.compile(r"^\d{3}-?\d{4}$"),
    "MX": re.compile(r"^\d{5}$"),
    "BR": re.compile(r"^\d{5}-?\d{3}$"),
    "IN": re.compile(r"^\d{6}$"),
    "CN": re.compile(r"^\d{6}$"),
    "RU": re.compile(r"^\d{6}$"),
    "PH": re.compile(r"^\d{4}$"),
}

# Postal shapes distinctive enough to imply a country on their own.
POSTAL_COUNTRY_HINTS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("CA", POSTAL_PATTERNS["CA"]),
    ("GB", POSTAL_PATTERNS["GB"]),
    ("AU", POSTAL_PATTERNS["AU"]),
)

# min_lng,min_lat,max_lng,max_lat as the geocoder expects.
BOUNDING_BOXES: Dict[str, str] = {
    "US": "-171.8,18.9,-66.9,71.4",
    "CA": "-141.0,41.7,-52.6,83.1",
    "MX": "-118.4,14.5,-86.7,32.7",
    "GB": "-8.6,49.9,1.8,60.9",
    "IE": "-10.5,51.4,-6.0,55.4",
    "DE": "5.9,47.3,15.0,55.1",
    "FR": "-5.1,41.3,9.6,51.1",
    "ES": "-9.3,36.0,3.3,43.8",
    "IT": "6.6,36.6,18.5,47.1",
    "NL": "3.3,50.8,7.2,53.5",
    "AU": "112.9,-43.7,153.7,-10.6",
    "NZ": "166.4,-47.3,178.6,-34.4",
    "PH": "116.9,4.6,126.6,21.1",
    "IN": "68.1,6.7,97.4,35.5",
}

# lower-cased city -> (display name, state, country code)
WELL_KNOWN_CITIES: Dict[str, Tuple[str, str, str]] = {
    "new york": ("New York", "NY", "US"),
    "los angeles": ("Los Angeles", "CA", "US"),
    "chicago": ("Chicago", "IL", "US"),
    "houston": ("Houston", "TX", "US"),
    "phoenix": ("Phoenix", "AZ", "US"),
    "philadelphia": ("Philadelphia", "PA", "US"),
    "san antonio": ("San Antonio", "TX", "US"),
    "san diego": ("San Diego", "CA", "US"),
    "dallas": ("Dallas", "TX", "US"),
    "san jose": ("San Jose", "CA", "US"),
    "austin": ("Austin", "TX", "US"),
    "jacksonville": ("Jacksonville", "FL", "US"),
    "san francisco": ("San Francisco", "CA", "US"),
    "columbus": ("Columbus", "OH", "US"),
    "seattle": ("Seattle", "WA", "US"),
    "denver": ("Denver", "CO", "US"),
    "washington": ("Washington", "DC", "US"),
    "boston": ("Boston", "MA", "US"),
    "nashville": ("Nashville", "TN", "US"),
    "las vegas": ("Las Vegas", "NV", "US"),
    "portland": ("Portland", "OR", "US"),
    "detroit": ("Detroit", "MI", "US"),
    "atlanta": ("Atlanta", "GA", "US"),
    "miami": ("Miami", "FL", "US"),
    "minneapolis": ("Minneapolis", "MN", "US"),
    "new orleans": ("New Orleans", "LA", "US"),
    "baltimore": ("Baltimore", "MD", "US"),
    "pittsburgh": ("Pittsburgh", "PA", "US"),
    "st. louis": ("St. Louis", "MO", "US"),
    "salt lake city": ("Salt Lake City", "UT", "US"),
    "kansas city": ("Kansas City", "MO", "US"),
    "charlotte": ("Charlotte", "NC", "US"),
    "indianapolis": ("Indianapolis", "IN", "US"),
    "honolulu": ("Honolulu", "HI", "US"),
    "toronto": ("Toronto", "ON", "CA"),
    "montreal": ("Montreal", "QC", "CA"),
    "vancouver": ("Vancouver", "BC", "CA"),
    "calgary": ("Calgary", "AB", "CA"),
    "ottawa": ("Ottawa", "ON", "CA"),
}

CITY_ALIASES: Dict[str, str] = {
    "nyc": "new york",
    "ny city": "new york",
    "new york city": "new york",
    "manhattan": "new york",
    "la": "los angeles",
    "l.a.": "los angeles",
    "sf": "san francisco",
    "san fran": "san francisco",
    "philly": "philadelphia",
    "vegas": "las vegas",
    "dc": "washington",
    "d.c.": "washington",
    "washington dc": "washington",
    "washington d.c.": "washington",
    "nola": "new orleans",
    "chi-town": "chicago",
    "atl": "atlanta",
    "slc": "salt lake city",
    "kc": "kansas city",
    "saint louis": "st. louis",
    "st louis": "st. louis",
    "h-town": "houston",
}

_TITLE_SPECIAL_CASES = {"nyc": "NYC", "la": "LA", "dc": "DC", "uk": "UK", "usa": "USA"}
_TITLE_LOWER_WORDS = {"of", "the", "and", "or", "in", "at", "by", "for"}


def _norm(text: Optional[str]) -> str:
    s = (text or "").strip()
    if not s:
        return ""
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", s).lower()


def title_case(value: str) -> str:
    text = (value or "").strip()
    if not text:
        return ""
    lowered = text.lower()
    if lowered in _TITLE_SPECIAL_CASES:
        return _TITLE_SPECIAL_CASES[lowered]
    words = []
    for index, word in enumerate(text.split()):
        if index and word.lower() in _TITLE_LOWER_WORDS:
            words.append(word.lower())
        else:
            words.append(word[:1].upper() + word[1:].lower())
    return " ".join(words)


def normalize_state(value: str) -> str:
    v = (value or "").strip()
    if not v:
        return ""
    if len(v) == 2 and v.isalpha():
        return v.upper()
    return STATE_ABBR.get(_norm(v), title_case(v))


def match_state_variant(value: str, cutoff: float = 0.85) -> Optional[str]:
    """Resolve dotted, informal or misspelled state names to a code."""
    key = _norm(value).replace(".", "").strip()
    if not key:
        return None
    compact = key.replace(" ", "")
    if len(compact) == 2 and compact.upper() in STATE_CODES:
        return compact.upper()
    if key in STATE_VARIANTS:
        return STATE_VARIANTS[key]
    if key in STATE_ABBR:
        return STATE_ABBR[key]
    close = get_close_matches(key, list(STATE_ABBR), n=1, cutoff=cutoff)
    return STATE_ABBR[close[0]] if close else None


def normalize_country_iso2(value: str) -> str:
    v = (value or "").strip()
    if not v:
        return ""
    return ISO2.get(v.lower(), v.upper() if len(v) == 2 else "")


def country_name(code: str) -> str:
    return COUNTRY_NAMES.get((code or "").upper(), "")


def is_valid_postal_code(postal_code: str, country_code: str) -> bool:
    if not postal_code:
        return False
    pattern = POSTAL_PATTERNS.get((country_code or "").upper())
    if pattern is None:
        return True
    return bool(pattern.match(postal_code.strip()))


def format_postal_code(postal_code: str, country_code: str) -> str:
    if not postal_code:
        return ""
    cleaned = re.sub(r"[\s-]+", "", postal_code).upper()
    country = (country_code or "").upper()
    if country == "US":
        if len(cleaned) == 9 and cleaned.isdigit():
            return f"{cleaned[:5]}-{cleaned[5:]}"
        return cleaned if len(cleaned) == 5 and cleaned.isdigit() else postal_code.strip()
    if country == "CA":
        return f"{cleaned[:3]} {cleaned[3:]}" if len(cleaned) == 6 else cleaned
    if country == "GB":
        return f"{cleaned[:-3]} {cleaned[-3:]}" if len(cleaned) >= 5 else cleaned
    if country == "BR":
        return f"{cleaned[:5]}-{cleaned[5:]}" if len(cleaned) == 8 else cleaned
    if country == "JP":
        return f"{cleaned[:3]}-{cleaned[3:]}" if len(cleaned) == 7 else cleaned
    return postal_code.strip()


def infer_country_from_postal(postal_code: str) -> str:
    code = (postal_code or "").strip()
    for country, pattern in POSTAL_COUNTRY_HINTS:
        if pattern.match(code):
            return country
    return ""


def lookup_city(city: str) -> Optional[Tuple[str, str, str]]:
    key = _norm(city)
    return WELL_KNOWN_CITIES.get(CITY_ALIASES.get(key, key))


def closest_city(city: str, cutoff: float) -> Optional[str]:
    key = _norm(city)
    if not key:
        return None
    close = get_close_matches(key, list(WELL_KNOWN_CITIES), n=1, cutoff=cutoff)
    return close[0] if close else None
