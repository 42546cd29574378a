import unittest

from dxcli.errors import ParseError
from dxcli.identifiers import ObjectClass, ObjectId, parse, try_parse


VALID_IDS = [
    "analysis-GFfkqz0054JJG8p1GBpv7qGX",
    "job-GZykQKj0GYJfQj2Q4xqKV5j0",
    "file-GFfbj0Q054J4ypqJ8vQjF4V7",
    "app-GJzjbP00vyjyXPpkFv7bxf1F",
    "applet-GZ2BF8Q0jZ5qj3bQBX5BFjjZ",
    "database-GZ6vP1801xf4fXjB3YVX011f",
    "record-GZ6vQPj0b5pJfbQ3XffQB1BJ",
    "project-GYgj4800jZ5YqgZ24ZzJpZvq",
    "container-GJzjbP008QGyXPpkFv7bxf1G",
    "file-AAAA",
    "project-GYgj4800jZ5YqgZ24ZzJpZvq:file-GFfbj0Q054J4ypqJ8vQjF4V7",
    "project-P1:record-R1",
]


class ParseTests(unittest.TestCase):
    def test_round_trip_is_exact(self):
        for raw in VALID_IDS:
            with self.subTest(raw=raw):
                self.assertEqual(str(parse(raw)), raw)

    def test_every_class_prefix_is_recognized(self):
        for object_class in ObjectClass:
            parsed = parse(f"{object_class.value}-X1")
            self.assertIs(parsed.object_class, object_class)
            self.assertEqual(parsed.local_id, "X1")
            self.assertIsNone(parsed.project)

    def test_unknown_prefix_is_unknown_class(self):
        for raw in ["bogus-id", "File-AAAA", "FILE-AAAA", "user-AAAA", "bogus", "bogus-", "x--", " file-AAAA", "bogus:file-AAAA"]:
            with self.subTest(raw=raw):
                with self.assertRaises(ParseError) as cm:
                    parse(raw)
                self.assertEqual(cm.exception.code, ParseError.UNKNOWN_CLASS)

    def test_malformed_inputs(self):
        for raw in [
            "",
            "-AAAA",
            "file",
            "file-",
            "file--AAAA",
            "file-AAAA-",
            "file-AA AA",
            "file-AAAA ",
            "file-AA_AA",
            "project-P1:",
            "job-J1:file-F1",
            "project-P1:job-J1",
            "project-P1:file-F1:file-F2",
        ]:
            with self.subTest(raw=raw):
                with self.assertRaises(ParseError) as cm:
                    parse(raw)
                self.assertEqual(cm.exception.code, ParseError.MALFORMED)

    def test_project_qualified_data_object(self):
        parsed = parse("project-P1:file-F1")
        self.assertIs(parsed.object_class, ObjectClass.FILE)
        self.assertEqual(parsed.dxid, "file-F1")
        self.assertEqual(parsed.project, ObjectId(ObjectClass.PROJECT, "P1"))
        self.assertEqual(parsed.unqualified(), ObjectId(ObjectClass.FILE, "F1"))

    def test_try_parse_ignores_non_identifiers(self):
        self.assertIsNone(try_parse("hello"))
        self.assertIsNone(try_parse(42))
        self.assertIsNone(try_parse(None))
        self.assertEqual(try_parse("job-J1"), ObjectId(ObjectClass.JOB, "J1"))


if __name__ == "__main__":
    unittest.main()
