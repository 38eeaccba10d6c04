"""CLI command for searching the local store."""

from __future__ import annotations

import json

import click

from clinisync.cli.helpers import (
    json_envelope,
    json_option,
    open_database,
    output_error,
    require_root,
)
from clinisync.cli.main import cli
from clinisync.search.compiler import UnsupportedParameterError
from clinisync.search.query import parse_query
from clinisync.search.spec import InvalidSearchSpecError


@cli.command()
@click.argument("resource_type")
@click.argument("params", nargs=-1)
@json_option
@click.option("--ids", "ids_only", is_flag=True, help="Print only Type/id of each match.")
def search(resource_type: str, params: tuple[str, ...], output_json: bool, ids_only: bool) -> None:
    """Search stored records with FHIR query parameters.

    \b
    Examples:
      clinisync search Patient given:contains=eve
      clinisync search RiskAssessment probability=ge0.5 _sort=-probability
      clinisync search Practitioner _has:Patient:general-practitioner:family=Doe
    """
    data_dir = require_root(output_json)

    pairs: list[tuple[str, str]] = []
    for param in params:
        key, sep, value = param.partition("=")
        if not sep:
            output_error(f"Expected PARAM=VALUE, got '{param}'.", "INVALID_QUERY", output_json)
        pairs.append((key, value))

    try:
        spec = parse_query(resource_type, pairs)
        results = open_database(data_dir).search(spec)
    except UnsupportedParameterError as e:
        output_error(str(e), "UNSUPPORTED_PARAMETER", output_json)
    except InvalidSearchSpecError as e:
        output_error(str(e), "INVALID_QUERY", output_json)

    if output_json:
        click.echo(json_envelope(True, data=results))
        return
    if not results:
        click.echo("No matches.")
        return
    for resource in results:
        if ids_only:
            click.echo(f"{resource['resourceType']}/{resource['id']}")
        else:
            click.echo(json.dumps(resource, sort_keys=True, ensure_ascii=False))
