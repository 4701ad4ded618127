import json

from jsonschema import Draft202012Validator

from config import SCHEMA_DIR


def _load_schema(schema_path) -> dict:
    with open(schema_path) as f:
        return json.load(f)


def validate_lcd_snapshot(data: dict, schema_path=SCHEMA_DIR / "lcd_snapshot.schema.json") -> None:
    Draft202012Validator(_load_schema(schema_path)).validate(data)


def validate_eligibility_report(data: dict, schema_path=SCHEMA_DIR / "eligibility_report.schema.json") -> None:
    Draft202012Validator(_load_schema(schema_path)).validate(data)
