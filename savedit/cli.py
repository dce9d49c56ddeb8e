"""
savedit CLI — inspect and edit GVAS save files.

Commands:
  savedit show    - Print the header and every property in a save
  savedit fields  - Print the catalog fields a save contains
  savedit get     - Print the value at a property path
  savedit set     - Set property paths in one save (PATH=VALUE ...)
  savedit edit    - Set catalog fields across several saves in one batch
  savedit preset  - Apply a named preset (max-level, restore) to saves
  savedit verify  - Check that saves decode and re-encode byte for byte
"""

from __future__ import annotations

import argparse
import hashlib
import json
import logging
import sys
from typing import Any


def _jsonable(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _format_value(value: Any, limit: int = 60) -> str:
    text = json.dumps(_jsonable(value), ensure_ascii=False)
    if len(text) > limit:
        text = text[:limit - 3] + "..."
    return text


def _split_assignment(text: str) -> tuple[str, str]:
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise ValueError(f"Expected NAME=VALUE, got {text!r}")
    return key, value


def _split_path_assignment(text: str) -> tuple[str, str]:
    """Split PATH=VALUE on the first '=' outside brackets (paths may hold Field=Value)."""
    depth = 0
    for i, ch in enumerate(text):
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        elif ch == "=" and depth == 0:
            if i == 0:
                break
            return text[:i], text[i + 1:]
    raise ValueError(f"Expected PATH=VALUE, got {text!r}")


def _parse_for_node(node, text: str) -> Any:
    """Parse command-line text according to the node's declared type."""
    from savedit._format import spec
    from savedit.fields import parse_value

    kinds = {
        spec.INT: "int", spec.BYTE: "int", spec.FLOAT: "float", spec.BOOL: "bool",
        spec.STR: "str", spec.NAME: "str", spec.ENUM: "str", spec.TEXT: "str",
    }
    if node.kind == spec.GUID:
        return bytes.fromhex(text.replace("-", ""))
    if node.kind in (spec.ARRAY, spec.SET):
        element_kind = kinds.get(spec.ELEMENT_KINDS.get(node.tag.inner_type or ""), "str")
        items = [item.strip() for item in text.split(",")] if text.strip() else []
        return [parse_value(item, element_kind, node.name) for item in items]
    return parse_value(text, kinds.get(node.kind, "str"), node.name)


def _print_batch(results, dry_run: bool) -> None:
    for result in results:
        if not result.ok:
            print(f"  FAIL  {result.path}: {result.error}")
        elif result.state in ("rolled back", "rollback failed", "not written"):
            print(f"  {result.state}  {result.path}" + (f": {result.error}" if result.error else ""))
        elif not result.changed:
            print(f"  same  {result.path}")
        else:
            verb = "would write" if dry_run else "wrote"
            print(f"  {verb}  {result.path}  {result.after[:16]}...")


def _run_batch(args: argparse.Namespace, items) -> None:
    from savedit.batch import BatchEditor, BatchError
    from savedit.fields import FieldCatalog

    config = args.config_data
    editor = BatchEditor(
        workers=int(config["workers"]),
        backup=bool(config["backup"]) and not args.no_backup,
        max_size=int(config["max_file_size"]),
        catalog=FieldCatalog.from_config(config),
    )
    try:
        results = editor.run(items, dry_run=args.dry_run)
    except BatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        _print_batch(e.results, args.dry_run)
        sys.exit(1)
    _print_batch(results, args.dry_run)


def cmd_show(args: argparse.Namespace) -> None:
    """Print header and property tree."""
    from savedit._format import spec
    from savedit._format.reader import SaveReader

    doc = SaveReader.read(args.path, max_size=int(args.config_data["max_file_size"]))

    if args.json:
        tree = {node.name if not node.tag.array_index else f"{node.name}[{node.tag.array_index}]":
                node.to_python() for node in doc.properties}
        print(json.dumps(_jsonable(tree), indent=2, ensure_ascii=False))
        return

    h = doc.header
    print(f"Class:    {h.save_game_class}")
    print(f"Engine:   {h.engine_version_string}")
    print(f"Version:  save {h.save_game_version}, package {h.package_version}")
    print(f"SHA-256:  {doc.source_checksum}")
    print()
    for path, node in doc.walk():
        if node.kind == spec.STRUCT:
            print(f"  {path}  <{node.tag.struct_name or node.type_name}>")
        elif node.kind in spec.CONTAINER_KINDS:
            print(f"  {path}  <{node.type_name}> [{len(node.value)}]")
        elif node.kind == spec.OPAQUE:
            print(f"  {path}  <{node.type_name}> ({len(node.value)} bytes, not decoded)")
        else:
            print(f"  {path}  <{node.type_name}> = {_format_value(node.to_python())}")


def cmd_fields(args: argparse.Namespace) -> None:
    """Print catalog fields present in a save."""
    from savedit.fields import FieldCatalog
    from savedit.session import FileSession

    catalog = FieldCatalog.from_config(args.config_data)
    session = FileSession.open(
        args.path, max_size=int(args.config_data["max_file_size"]), catalog=catalog,
    )
    found = session.fields()
    if not found:
        print("No known fields in this file.")
        return
    for field_id, value in found.items():
        spec = catalog.get(field_id)
        print(f"  {field_id:<26} {_format_value(value):<20} ({spec.scope})")


def cmd_get(args: argparse.Namespace) -> None:
    """Print the value at a property path."""
    from savedit._format.reader import SaveReader

    doc = SaveReader.read(args.path, max_size=int(args.config_data["max_file_size"]))
    print(json.dumps(_jsonable(doc.get(args.prop)), indent=2, ensure_ascii=False))


def cmd_set(args: argparse.Namespace) -> None:
    """Set one or more property paths in a single save."""
    from savedit.session import FileSession

    config = args.config_data
    session = FileSession.open(args.path, max_size=int(config["max_file_size"]))
    edits = []
    for assignment in args.assignments:
        prop, text = _split_path_assignment(assignment)
        edits.append((prop, _parse_for_node(session.document.find(prop), text)))
    session.apply(edits)

    if args.dry_run:
        data = session.preview()
        print(f"Would write {len(data)} bytes  {hashlib.sha256(data).hexdigest()[:16]}...")
        return
    written = session.commit(
        args.output, backup=bool(config["backup"]) and not args.no_backup and not args.output,
    )
    print(f"Wrote {args.output or args.path} ({written} bytes)")


def cmd_edit(args: argparse.Namespace) -> None:
    """Set catalog fields across several saves."""
    from savedit.batch import FileEdit
    from savedit.fields import FieldCatalog

    catalog = FieldCatalog.from_config(args.config_data)
    values = {}
    for assignment in args.field or []:
        field_id, text = _split_assignment(assignment)
        values[field_id] = catalog.get(field_id).parse(text)
    if not values:
        print("Error: nothing to do, pass at least one --field ID=VALUE", file=sys.stderr)
        sys.exit(1)
    _run_batch(args, [FileEdit(path, fields=values) for path in args.paths])


def cmd_preset(args: argparse.Namespace) -> None:
    """Apply a named preset to saves."""
    from savedit.batch import FileEdit
    from savedit.fields import preset_fields

    preset_fields(args.name)
    _run_batch(args, [FileEdit(path, preset=args.name) for path in args.paths])


def cmd_verify(args: argparse.Namespace) -> None:
    """Decode and re-encode saves; report whether the bytes survive unchanged."""
    from savedit._format.errors import SaveFormatError
    from savedit.session import FileSession

    failures = 0
    for path in args.paths:
        try:
            session = FileSession.open(path, max_size=int(args.config_data["max_file_size"]))
            session.preview()
        except (SaveFormatError, OSError, ValueError) as e:
            failures += 1
            print(f"  FAIL  {path}: {e}")
            continue
        print(f"  OK    {path}  {session.source_checksum[:16]}...")
    if failures:
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="savedit",
        description="Inspect and edit GVAS save files.",
    )
    from savedit import __version__
    parser.add_argument("--version", action="version", version=f"savedit {__version__}")
    parser.add_argument("--config", help="Config file (default: $SAVEDIT_CONFIG or ~/.savedit/config.toml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # show
    p_show = sub.add_parser("show", help="Print header and property tree")
    p_show.add_argument("path", help="Path to .sav file")
    p_show.add_argument("--json", action="store_true", help="Print properties as JSON")

    # fields
    p_fields = sub.add_parser("fields", help="Print known fields and their values")
    p_fields.add_argument("path", help="Path to .sav file")

    # get
    p_get = sub.add_parser("get", help="Print the value at a property path")
    p_get.add_argument("path", help="Path to .sav file")
    p_get.add_argument("prop", help="Property path, e.g. MetaResources[MetaRow=Credits].Count")

    # set
    p_set = sub.add_parser("set", help="Set property paths in one save")
    p_set.add_argument("path", help="Path to .sav file")
    p_set.add_argument("assignments", nargs="+", metavar="PATH=VALUE")
    p_set.add_argument("-o", "--output", help="Write to this file instead of in place")

    # edit
    p_edit = sub.add_parser("edit", help="Set catalog fields across saves")
    p_edit.add_argument("paths", nargs="+", help="Save files")
    p_edit.add_argument("--field", action="append", metavar="ID=VALUE", help="Field to set (repeatable)")

    # preset
    p_preset = sub.add_parser("preset", help="Apply a preset (max-level, restore)")
    p_preset.add_argument("name", help="Preset name")
    p_preset.add_argument("paths", nargs="+", help="Save files")

    for p in (p_set, p_edit, p_preset):
        p.add_argument("--dry-run", action="store_true", help="Validate and report without writing")
        p.add_argument("--no-backup", action="store_true", help="Do not keep .bak copies")

    # verify
    p_verify = sub.add_parser("verify", help="Check saves round-trip byte for byte")
    p_verify.add_argument("paths", nargs="+", help="Save files")

    args = parser.parse_args(argv)

    if not args.command:
        print("savedit — inspect and edit GVAS save files")
        print()
        print("Usage:")
        print("  savedit show Character_1.sav")
        print("  savedit fields Profile.sav")
        print("  savedit get Profile.sav 'MetaResources[MetaRow=Credits].Count'")
        print("  savedit set Character_1.sav XP=5000 IsDead=false")
        print("  savedit edit Character_*.sav --field ExoticExtractionUnlocked=true")
        print("  savedit preset max-level Character_1.sav Character_2.sav")
        print("  savedit verify *.sav")
        print()
        print("Run 'savedit <command> --help' for details on any command.")
        sys.exit(0)

    from savedit._format.errors import SaveFormatError
    from savedit.config import load_config

    try:
        args.config_data = load_config(args.config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    level = logging.DEBUG if args.verbose else str(args.config_data["log_level"]).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    commands = {
        "show": cmd_show,
        "fields": cmd_fields,
        "get": cmd_get,
        "set": cmd_set,
        "edit": cmd_edit,
        "preset": cmd_preset,
        "verify": cmd_verify,
    }
    try:
        commands[args.command](args)
    except (SaveFormatError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
