"""Search parameter registry.

Maps ``(resource type, parameter name)`` to the parameter's type and the
body paths its values are read from.  Paths are dotted field names; list
fields are flattened at every step, so ``name.given`` reaches every given
name of every ``HumanName``.
"""

from __future__ import annotations

from dataclasses import dataclass

STRING = "string"
NUMBER = "number"
DATE = "date"
QUANTITY = "quantity"
TOKEN = "token"
REFERENCE = "reference"

PARAM_TYPES: frozenset[str] = frozenset({STRING, NUMBER, DATE, QUANTITY, TOKEN, REFERENCE})

# Parameters registered under this pseudo-type apply to every resource type.
ANY_RESOURCE = "Resource"


@dataclass(frozen=True)
class SearchParam:
    resource_type: str
    name: str
    type: str
    paths: tuple[str, ...]
    targets: tuple[str, ...] = ()
    implicit_system: str | None = None

    def __post_init__(self) -> None:
        if self.type not in PARAM_TYPES:
            raise ValueError(f"Unknown search parameter type: {self.type!r}")
        if not self.paths:
            raise ValueError(f"Search parameter {self.name!r} has no paths")


_REGISTRY: dict[tuple[str, str], SearchParam] = {}


def register_param(param: SearchParam) -> SearchParam:
    """Register *param*, replacing any existing definition with the same key.

    Records already in a store keep their old index until the store is
    reindexed.
    """
    _REGISTRY[(param.resource_type, param.name)] = param
    return param


def get_param(resource_type: str, name: str) -> SearchParam | None:
    """Look up a parameter, falling back to the ones shared by all types."""
    return _REGISTRY.get((resource_type, name)) or _REGISTRY.get((ANY_RESOURCE, name))


def params_for(resource_type: str) -> list[SearchParam]:
    """Return every parameter that applies to *resource_type*, sorted by name."""
    found: dict[str, SearchParam] = {}
    for (rtype, name), param in _REGISTRY.items():
        if rtype == ANY_RESOURCE:
            found.setdefault(name, param)
    for (rtype, name), param in _REGISTRY.items():
        if rtype == resource_type:
            found[name] = param
    return [found[name] for name in sorted(found)]


def _define(
    resource_type: str,
    name: str,
    type_: str,
    *paths: str,
    targets: tuple[str, ...] = (),
    implicit_system: str | None = None,
) -> None:
    register_param(
        SearchParam(
            resource_type=resource_type,
            name=name,
            type=type_,
            paths=paths,
            targets=targets,
            implicit_system=implicit_system,
        )
    )


# ---------------------------------------------------------------------------
# Built-in definitions
# ---------------------------------------------------------------------------

_NAME_PATHS = ("name.family", "name.given", "name.text", "name.prefix", "name.suffix")
_PATIENT = ("Patient",)

_define(ANY_RESOURCE, "_id", TOKEN, "id")

for _type in ("Patient", "Practitioner"):
    _define(_type, "given", STRING, "name.given")
    _define(_type, "family", STRING, "name.family")
    _define(_type, "name", STRING, *_NAME_PATHS)
    _define(_type, "gender", TOKEN, "gender", implicit_system="http://hl7.org/fhir/administrative-gender")
    _define(_type, "identifier", TOKEN, "identifier")
    _define(_type, "address-country", STRING, "address.country")
    _define(_type, "address-city", STRING, "address.city")
    _define(_type, "active", TOKEN, "active")

_define("Patient", "birthdate", DATE, "birthDate")
_define("Patient", "death-date", DATE, "deceasedDateTime")
_define(
    "Patient",
    "general-practitioner",
    REFERENCE,
    "generalPractitioner",
    targets=("Practitioner", "PractitionerRole", "Organization"),
)
_define("Patient", "organization", REFERENCE, "managingOrganization", targets=("Organization",))

_define("Observation", "code", TOKEN, "code")
_define("Observation", "category", TOKEN, "category")
_define("Observation", "status", TOKEN, "status", implicit_system="http://hl7.org/fhir/observation-status")
_define("Observation", "subject", REFERENCE, "subject")
_define("Observation", "patient", REFERENCE, "subject", targets=_PATIENT)
_define("Observation", "encounter", REFERENCE, "encounter", targets=("Encounter",))
_define("Observation", "performer", REFERENCE, "performer")
_define("Observation", "date", DATE, "effectiveDateTime", "effectivePeriod", "effectiveInstant")
_define("Observation", "value-quantity", QUANTITY, "valueQuantity")

_define("Condition", "code", TOKEN, "code")
_define("Condition", "clinical-status", TOKEN, "clinicalStatus")
_define("Condition", "subject", REFERENCE, "subject")
_define("Condition", "patient", REFERENCE, "subject", targets=_PATIENT)
_define("Condition", "onset-date", DATE, "onsetDateTime", "onsetPeriod")
_define("Condition", "recorded-date", DATE, "recordedDate")

_define("Immunization", "vaccine-code", TOKEN, "vaccineCode")
_define("Immunization", "status", TOKEN, "status", implicit_system="http://hl7.org/fhir/event-status")
_define("Immunization", "patient", REFERENCE, "patient", targets=_PATIENT)
_define("Immunization", "date", DATE, "occurrenceDateTime")

_define("CarePlan", "subject", REFERENCE, "subject")
_define("CarePlan", "patient", REFERENCE, "subject", targets=_PATIENT)
_define("CarePlan", "performer", REFERENCE, "activity.detail.performer")
_define("CarePlan", "category", TOKEN, "category")
_define("CarePlan", "status", TOKEN, "status", implicit_system="http://hl7.org/fhir/request-status")
_define("CarePlan", "date", DATE, "period")

_define("RiskAssessment", "probability", NUMBER, "prediction.probabilityDecimal")
_define("RiskAssessment", "subject", REFERENCE, "subject")
_define("RiskAssessment", "patient", REFERENCE, "subject", targets=_PATIENT)
_define("RiskAssessment", "date", DATE, "occurrenceDateTime", "occurrencePeriod")

_define("Encounter", "status", TOKEN, "status", implicit_system="http://hl7.org/fhir/encounter-status")
_define("Encounter", "class", TOKEN, "class")
_define("Encounter", "type", TOKEN, "type")
_define("Encounter", "subject", REFERENCE, "subject")
_define("Encounter", "patient", REFERENCE, "subject", targets=_PATIENT)
_define("Encounter", "participant", REFERENCE, "participant.individual")
_define("Encounter", "date", DATE, "period")
_define("Encounter", "length", QUANTITY, "length")
