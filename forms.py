# forms.py
"""Field lists that drive the admin edit screens and parse their posts."""
from dataclasses import dataclass

from pricing import to_price


@dataclass(frozen=True)
class Field:
    name: str
    label: str
    kind: str = "text"  # text, textarea, url, money, int, bool, select
    required: bool = False
    choices: tuple = ()
    blank: object = ""  # stored when left empty


def parse_form(fields, form):
    """Return (values, errors) for the posted ``form``."""
    values, errors = {}, []
    for f in fields:
        if f.kind == "bool":
            values[f.name] = form.get(f.name) in ("on", "true", "1", "y")
            continue
        raw = form.get(f.name, "").strip()
        if not raw:
            if f.required:
                errors.append(f"{f.label} is required.")
            else:
                values[f.name] = f.blank
            continue
        if f.kind == "money":
            try:
                values[f.name] = to_price(raw)
            except ValueError:
                errors.append(f"Invalid {f.label.lower()}.")
        elif f.kind == "int":
            try:
                values[f.name] = int(raw)
            except ValueError:
                errors.append(f"{f.label} must be a whole number.")
        elif f.kind == "select":
            if raw in f.choices:
                values[f.name] = raw
            else:
                errors.append(f"Invalid {f.label.lower()}.")
        else:
            values[f.name] = raw
    return values, errors


def initial_values(fields, obj=None):
    if obj is None:
        return {f.name: "" for f in fields}
    return {f.name: getattr(obj, f.name) for f in fields}
