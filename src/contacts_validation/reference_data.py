from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .errors import ValidationEngineError
from .normalization import DIRECTIONS, STATE_ABBR, STREET_TYPES, UNIT_TYPES
from .store import DataStore

logger = logging.getLogger(__name__)

DEFAULT_VALID_DOMAINS = (
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "live.com",
    "aol.com", "icloud.com", "mail.com", "protonmail.com", "zoho.com",
    "yandex.com", "gmx.com", "fastmail.com", "tutanota.com", "me.com",
    "msn.com", "qq.com", "163.com", "126.com", "sina.com", "verizon.net",
    "att.net", "sbcglobal.net", "cox.net", "earthlink.net", "charter.net",
    "comcast.net", "xfinity.com", "rocketmail.com", "ymail.com",
    "mail.ru", "inbox.ru", "list.ru", "bk.ru", "protonmail.ch",
    "pm.me", "yahoo.co.uk", "yahoo.ca", "yahoo.com.au", "yahoo.co.in",
    "yahoo.co.jp", "yahoo.de", "yahoo.fr", "yahoo.es", "yahoo.it",
    "outlook.de", "outlook.fr", "outlook.es", "outlook.it", "outlook.jp",
    "gmail.co.uk", "gmail.ca", "gmail.com.au", "gmail.co.in", "gmail.de",
)

DEFAULT_INVALID_DOMAINS = (
    "example.com", "test.com", "email.com", "tempmail.com", "throwaway.email",
    "guerrillamail.com", "10minutemail.com", "mailinator.com", "maildrop.cc",
    "trashmail.com", "fake.com", "dummy.com", "nowhere.com", "noemail.com",
    "bounce.com", "blocked.com", "invalid.com", "noreply.com", "donotreply.com",
    "yopmail.com", "sharklasers.com", "getnada.com", "dispostable.com",
)

DEFAULT_DOMAIN_TYPOS: Dict[str, str] = {
    "gmial.com": "gmail.com",
    "gmai.com": "gmail.com",
    "gmil.com": "gmail.com",
    "gmal.com": "gmail.com",
    "gmali.com": "gmail.com",
    "gamil.com": "gmail.com",
    "gmail.co": "gmail.com",
    "gmail.cm": "gmail.com",
    "gmaill.com": "gmail.com",
    "gnail.com": "gmail.com",
    "yahooo.com": "yahoo.com",
    "yaho.com": "yahoo.com",
    "yahou.com": "yahoo.com",
    "yahoo.co": "yahoo.com",
    "yahoo.cm": "yahoo.com",
    "yhaoo.com": "yahoo.com",
    "hotmial.com": "hotmail.com",
    "hotmal.com": "hotmail.com",
    "hotmil.com": "hotmail.com",
    "hotmail.co": "hotmail.com",
    "hotmail.cm": "hotmail.com",
    "otmail.com": "hotmail.com",
    "outlok.com": "outlook.com",
    "outloo.com": "outlook.com",
    "outlook.co": "outlook.com",
    "outlook.cm": "outlook.com",
    "iclud.com": "icloud.com",
    "icloud.co": "icloud.com",
    "icloud.cm": "icloud.com",
    "protonmai.com": "protonmail.com",
    "protonmal.com": "protonmail.com",
}

DEFAULT_VALID_TLDS = (
    ".com", ".net", ".org", ".edu", ".gov", ".mil", ".io", ".co",
    ".us", ".uk", ".ca", ".au", ".de", ".fr", ".info", ".biz",
)

DEFAULT_TLD_TYPOS: Dict[str, str] = {
    ".con": ".com",
    ".cmo": ".com",
    ".ocm": ".com",
    ".comm": ".com",
    ".coom": ".com",
    ".vom": ".com",
    ".xom": ".com",
    ".nte": ".net",
    ".nett": ".net",
    ".ogr": ".org",
    ".orgg": ".org",
}

# country -> (calling code, national prefixes that indicate a mobile line)
DEFAULT_COUNTRY_PHONE_DATA: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "US": ("+1", ()),
    "CA": ("+1", ()),
    "GB": ("+44", ("7",)),
    "AU": ("+61", ("4",)),
    "DE": ("+49", ("15", "16", "17")),
    "FR": ("+33", ("6", "7")),
    "PH": ("+63", ("9",)),
}

DEFAULT_HONORIFICS = (
    "mr", "mrs", "ms", "miss", "dr", "prof", "rev", "hon", "sir", "madam",
    "lord", "lady", "capt", "major", "col", "lt", "cmdr", "sgt",
)

DEFAULT_SUFFIXES: Dict[str, str] = {
    "jr": "Jr.",
    "sr": "Sr.",
    "i": "I",
    "ii": "II",
    "iii": "III",
    "iv": "IV",
    "v": "V",
    "phd": "Ph.D.",
    "md": "M.D.",
    "dds": "D.D.S.",
    "esq": "Esq.",
}

DEFAULT_PARTICLES = (
    "von", "van", "de", "del", "della", "di", "da", "do", "dos", "das", "du",
    "la", "le", "el", "les", "lo", "mac", "mc", "o'", "al", "bin", "ibn", "ap",
    "ben", "bat", "bint", "ter", "ten", "den", "der",
)

DEFAULT_SUSPICIOUS_NAMES = (
    "test", "user", "admin", "sample", "demo", "fake", "anonymous", "unknown",
    "noreply", "example", "null", "undefined", "n/a", "none", "blank",
)

DEFAULT_SECURITY_PATTERNS = (
    ");", "--", "/*", "*/", ";", "drop ", "select ", "insert ", "update ",
    "delete ", "union ", "<script", "script>", "<", ">",
)

DEFAULT_SPECIAL_CASE_NAMES: Dict[str, str] = {
    "obrien": "O'Brien",
    "oneill": "O'Neill",
    "odonnell": "O'Donnell",
    "mcdonald": "McDonald",
    "macleod": "MacLeod",
    "vanhalen": "Van Halen",
    "desouza": "De Souza",
    "delafuente": "De la Fuente",
    "macassi": "Macassi",
}


def _frozen_map(values: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(values))


@dataclass(frozen=True)
class EmailReferenceData:
    valid_domains: FrozenSet[str]
    invalid_domains: FrozenSet[str]
    domain_typos: Mapping[str, str]
    valid_tlds: Tuple[str, ...]
    tld_typos: Mapping[str, str]


@dataclass(frozen=True)
class CountryPhoneData:
    calling_code: str
    mobile_prefixes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PhoneReferenceData:
    countries: Mapping[str, CountryPhoneData]


@dataclass(frozen=True)
class AddressReferenceData:
    street_types: Mapping[str, str]
    unit_types: Mapping[str, str]
    directions: Mapping[str, str]
    states: Mapping[str, str]


@dataclass(frozen=True)
class NameReferenceData:
    honorifics: FrozenSet[str]
    suffixes: Mapping[str, str]
    particles: Tuple[str, ...]
    suspicious_names: Tuple[str, ...]
    security_patterns: Tuple[str, ...]
    special_cases: Mapping[str, str]


@dataclass(frozen=True)
class ReferenceData:
    email: EmailReferenceData
    phone: PhoneReferenceData
    address: AddressReferenceData
    name: NameReferenceData
    sources: Mapping[str, str] = field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        return {
            "valid_domains": len(self.email.valid_domains),
            "invalid_domains": len(self.email.invalid_domains),
            "domain_typos": len(self.email.domain_typos),
            "phone_countries": len(self.phone.countries),
            "street_types": len(self.address.street_types),
            "honorifics": len(self.name.honorifics),
            "particles": len(self.name.particles),
            "sources": dict(self.sources),
        }


class _TableReader:
    """Reads reference tables, recording where each one came from."""

    def __init__(self, store: Optional[DataStore]) -> None:
        self.store = store
        self.sources: Dict[str, str] = {}

    def rows(self, table: str, columns: Iterable[str]) -> List[Dict[str, Any]]:
        if self.store is None:
            self.sources[table] = "defaults"
            return []
        try:
            rows = self.store.select(table, {}, columns=list(columns))
        except (ValidationEngineError, OSError, RuntimeError) as exc:
            logger.warning("Reference table %s unavailable, using defaults: %s", table, exc)
            self.sources[table] = "defaults"
            return []
        self.sources[table] = "store" if rows else "defaults"
        return rows

    def values(self, table: str, column: str, default: Iterable[str]) -> List[str]:
        rows = self.rows(table, [column])
        values = [str(row[column]).strip().lower() for row in rows if row.get(column)]
        return values or [v.lower() for v in default]

    def pairs(
        self,
        table: str,
        key_col: str,
        value_col: str,
        default: Mapping[str, str],
        transform: Callable[[str], str] = str.lower,
    ) -> Dict[str, str]:
        rows = self.rows(table, [key_col, value_col])
        mapping = {
            str(row[key_col]).strip().lower(): transform(str(row[value_col]).strip())
            for row in rows
            if row.get(key_col) and row.get(value_col)
        }
        return mapping or dict(default)


def _country_phone_data(reader: _TableReader) -> Dict[str, CountryPhoneData]:
    rows = reader.rows("country_phone_data", ["country_code", "calling_code", "mobile_begins_with"])
    countries: Dict[str, CountryPhoneData] = {}
    for row in rows:
        code = str(row.get("country_code") or "").strip().upper()
        if not code:
            continue
        prefixes = str(row.get("mobile_begins_with") or "")
        countries[code] = CountryPhoneData(
            calling_code=str(row.get("calling_code") or "").strip(),
            mobile_prefixes=tuple(p.strip() for p in prefixes.split(",") if p.strip()),
        )
    if not countries:
        countries = {
            code: CountryPhoneData(calling_code=calling, mobile_prefixes=prefixes)
            for code, (calling, prefixes) in DEFAULT_COUNTRY_PHONE_DATA.items()
        }
    return countries


def load_reference_data(store: Optional[DataStore] = None) -> ReferenceData:
    """
    Build an immutable reference snapshot from ``store``.

    Empty or unreachable tables fall back to the embedded defaults, so this
    never raises for store problems.
    """
    reader = _TableReader(store)

    tlds = reader.values("valid_tlds", "tld", DEFAULT_VALID_TLDS)
    email = EmailReferenceData(
        valid_domains=frozenset(reader.values("valid_domains", "domain", DEFAULT_VALID_DOMAINS)),
        invalid_domains=frozenset(
            reader.values("invalid_domains", "domain", DEFAULT_INVALID_DOMAINS)
        ),
        domain_typos=_frozen_map(
            reader.pairs("domain_typos", "typo_domain", "correct_domain", DEFAULT_DOMAIN_TYPOS)
        ),
        valid_tlds=tuple(t if t.startswith(".") else f".{t}" for t in tlds),
        tld_typos=_frozen_map(
            reader.pairs("tld_typos", "typo_tld", "correct_tld", DEFAULT_TLD_TYPOS)
        ),
    )
    phone = PhoneReferenceData(countries=_frozen_map(_country_phone_data(reader)))
    address = AddressReferenceData(
        street_types=_frozen_map(
            reader.pairs("street_types", "name", "abbreviation", STREET_TYPES, transform=str)
        ),
        unit_types=_frozen_map(UNIT_TYPES),
        directions=_frozen_map(DIRECTIONS),
        states=_frozen_map(STATE_ABBR),
    )
    name = NameReferenceData(
        honorifics=frozenset(reader.values("honorifics", "honorific", DEFAULT_HONORIFICS)),
        suffixes=_frozen_map(
            reader.pairs("suffixes", "suffix", "formatted", DEFAULT_SUFFIXES, transform=str)
        ),
        particles=tuple(reader.values("name_particles", "particle", DEFAULT_PARTICLES)),
        suspicious_names=tuple(reader.values("suspicious_names", "name", DEFAULT_SUSPICIOUS_NAMES)),
        security_patterns=tuple(
            reader.values("security_patterns", "pattern", DEFAULT_SECURITY_PATTERNS)
        ),
        special_cases=_frozen_map(
            reader.pairs(
                "special_case_names",
                "name_typo",
                "name_correction",
                DEFAULT_SPECIAL_CASE_NAMES,
                transform=str,
            )
        ),
    )
    snapshot = ReferenceData(
        email=email,
        phone=phone,
        address=address,
        name=name,
        sources=_frozen_map(reader.sources),
    )
    logger.info("Reference data loaded: %s", snapshot.summary())
    return snapshot
