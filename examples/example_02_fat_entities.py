"""Example 02: Values larger than one table cell.

A value whose serialized form exceeds one cell is split across the E01..E16
slots of the same record and joined again on read.
"""

from pathlib import Path

from fattable import FatEntityCodec, ObjectTooLargeError, TableContext, json_codec


def main():
    """Run the fat entity example."""
    Path("tmp").mkdir(exist_ok=True)
    with TableContext.open(json_codec(type_name="Document"), db_path="tmp/docs.db") as ctx:
        body = "lorem ipsum " * 20_000
        ctx.save({"id": "doc-1", "body": body}).raise_for_failures()

        record = ctx.reader.get("Default", "doc-1")
        slots = sorted(name for name in record.properties if name.startswith("E"))
        print(f"✓ doc-1 stored across {len(slots)} slots: {', '.join(slots)}")
        assert ctx.get_by_id("doc-1")["body"] == body

        codec = FatEntityCodec()
        try:
            codec.split("x" * (codec.capacity + 1))
        except ObjectTooLargeError as e:
            print(f"✓ Oversized value rejected: {e}")


if __name__ == "__main__":
    main()
