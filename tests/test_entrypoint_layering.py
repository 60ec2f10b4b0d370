import ast
import unittest
from pathlib import Path


_ROOT = Path(__file__).resolve().parents[1]
ENTRYPOINTS = (
    "siesa_bridge/cli.py",
    "siesa_bridge/workers/order_export_worker.py",
    "siesa_bridge/workers/inventory_sync_worker.py",
)


class EntrypointLayeringTest(unittest.TestCase):
    def test_entrypoints_do_not_embed_sql_or_transitions(self) -> None:
        forbidden_snippets = (
            "db.execute(",
            "UPDATE orders",
            "UPDATE inventory_sync",
            "status = ?",
        )

        for relative in ENTRYPOINTS:
            source = (_ROOT / relative).read_text(encoding="utf-8")
            module = ast.parse(source)
            lines = source.splitlines()
            for node in ast.walk(module):
                if not isinstance(node, ast.FunctionDef):
                    continue
                body_src = "\n".join(lines[node.lineno - 1 : node.end_lineno])
                for snippet in forbidden_snippets:
                    self.assertNotIn(
                        snippet,
                        body_src,
                        msg=f"`{relative}:{node.name}` should not contain `{snippet}`",
                    )


if __name__ == "__main__":
    unittest.main()
