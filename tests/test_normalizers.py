from datetime import datetime, timezone
import unittest

from dxcli.errors import NormalizeError
from dxcli.identifiers import ObjectClass, ObjectId, parse
from dxcli.normalizers import SCHEMAS, ClassNormalizer, normalize, parse_timestamp


def _file_payload(**overrides):
    payload = {
        "id": "file-F1",
        "project": "project-P1",
        "class": "file",
        "sponsored": False,
        "name": "reads.fastq.gz",
        "types": [],
        "state": "closed",
        "hidden": False,
        "links": ["file-F2", "record-R1"],
        "folder": "/data",
        "tags": ["raw"],
        "created": 1672628645678,
        "modified": 1672628700000,
        "createdBy": {"user": "user-alice"},
        "media": "application/gzip",
        "size": 1024,
        "properties": {"sample": "S1"},
        "details": {},
    }
    payload.update(overrides)
    return payload


def _job_payload():
    return {
        "id": "job-J1",
        "try": 0,
        "class": "job",
        "name": "bwa_mem",
        "executableName": "bwa_mem",
        "created": 1700000000000,
        "tryCreated": 1700000000000,
        "modified": 1700000300000,
        "startedRunning": 1700000060000,
        "stoppedRunning": None,
        "billTo": "org-lab",
        "project": "project-P1",
        "folder": "/out",
        "rootExecution": "job-J1",
        "parentJob": None,
        "originJob": "job-J1",
        "analysis": "analysis-A1",
        "state": "running",
        "applet": "applet-X1",
        "dependsOn": ["job-J0", "job-J1"],
        "workspace": "container-C1",
        "runInput": {
            "reads": {"$dnanexus_link": "file-F1"},
            "genome": {"$dnanexus_link": {"project": "project-P2", "id": "file-F9"}},
            "label": "file-NOTALINK",
            "threads": 4,
        },
        "output": None,
        "tags": [],
    }


class TimestampTests(unittest.TestCase):
    def test_epoch_milliseconds(self):
        expected = datetime(2023, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        self.assertEqual(parse_timestamp(1672628645678, "created"), expected)
        self.assertEqual(parse_timestamp("1672628645678", "created"), expected)

    def test_iso_strings(self):
        expected = datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        self.assertEqual(parse_timestamp("2023-01-02T03:04:05Z", "created"), expected)
        self.assertEqual(parse_timestamp("2023-01-02T03:04:05", "created"), expected)
        self.assertEqual(parse_timestamp("2023-01-02T05:04:05+02:00", "created"), expected)

    def test_none_is_absent(self):
        self.assertIsNone(parse_timestamp(None, "created"))

    def test_unrecognized_formats(self):
        for value in ["yesterday", "", True, {"t": 1}, [1], "2023-13-45", "²", "①", "١٢٣"]:
            with self.subTest(value=value):
                with self.assertRaises(NormalizeError) as cm:
                    parse_timestamp(value, "created")
                self.assertEqual(cm.exception.code, NormalizeError.BAD_TIMESTAMP)
                self.assertIn("created", cm.exception.message)


class NormalizeTests(unittest.TestCase):
    def test_every_class_has_a_schema(self):
        self.assertEqual(set(SCHEMAS), set(ObjectClass))

    def test_file_canonical_fields(self):
        d = normalize(ObjectClass.FILE, parse("file-F1"), _file_payload())

        self.assertEqual(d.id, ObjectId(ObjectClass.FILE, "F1"))
        self.assertEqual(d.name, "reads.fastq.gz")
        self.assertEqual(d.state, "closed")
        self.assertEqual(d.created_at, datetime(2023, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))
        self.assertEqual(d.context, ObjectId(ObjectClass.PROJECT, "P1"))
        self.assertEqual(d.references, (parse("file-F2"), parse("record-R1")))

    def test_extra_fields_preserved_in_source_order(self):
        raw = _file_payload(brandNewField={"nested": [1, 2]})
        d = normalize(ObjectClass.FILE, parse("file-F1"), raw)

        expected_keys = [k for k in raw if k not in {"id", "class", "name", "state", "created", "modified", "project"}]
        self.assertEqual(list(d.properties), expected_keys)
        self.assertEqual(d.properties["brandNewField"], {"nested": [1, 2]})
        self.assertEqual(d.properties["createdBy"], {"user": "user-alice"})
        self.assertIs(d.properties["hidden"], False)

    def test_missing_optional_fields_are_none(self):
        d = normalize(ObjectClass.RECORD, parse("record-R1"), {"id": "record-R1", "class": "record"})

        self.assertIsNone(d.name)
        self.assertIsNone(d.state)
        self.assertIsNone(d.created_at)
        self.assertIsNone(d.modified_at)
        self.assertIsNone(d.context)
        self.assertEqual(dict(d.properties), {})
        self.assertEqual(d.references, ())

    def test_empty_string_name_is_kept(self):
        d = normalize(ObjectClass.RECORD, parse("record-R1"), {"id": "record-R1", "class": "record", "name": ""})
        self.assertEqual(d.name, "")

    def test_missing_required_fields(self):
        for raw, field in [
            ({"class": "file"}, "id"),
            ({"id": "file-F1"}, "class"),
            ({"id": "file-F1", "class": None}, "class"),
        ]:
            with self.subTest(field=field):
                with self.assertRaises(NormalizeError) as cm:
                    normalize(ObjectClass.FILE, parse("file-F1"), raw)
                self.assertEqual(cm.exception.code, NormalizeError.MISSING_REQUIRED_FIELD)
                self.assertIn(field, cm.exception.message)

    def test_configured_required_fields(self):
        normalizer = ClassNormalizer({"job": ["state", "project"]})
        self.assertEqual(normalizer.required_for(ObjectClass.JOB), ("id", "class", "state", "project"))
        self.assertEqual(normalizer.required_for(ObjectClass.FILE), ("id", "class"))

        with self.assertRaises(NormalizeError) as cm:
            normalizer.normalize(ObjectClass.JOB, parse("job-J1"), {"id": "job-J1", "class": "job", "project": "project-P1"})
        self.assertEqual(cm.exception.code, NormalizeError.MISSING_REQUIRED_FIELD)
        self.assertIn("state", cm.exception.message)

    def test_unknown_class_in_required_fields(self):
        with self.assertRaises(ValueError):
            ClassNormalizer({"workflow": ["id"]})

    def test_class_and_id_mismatch(self):
        with self.assertRaises(NormalizeError) as cm:
            normalize(ObjectClass.FILE, parse("file-F1"), _file_payload(**{"class": "record"}))
        self.assertEqual(cm.exception.code, NormalizeError.CLASS_MISMATCH)

        with self.assertRaises(NormalizeError) as cm:
            normalize(ObjectClass.FILE, parse("file-F1"), _file_payload(id="file-OTHER"))
        self.assertEqual(cm.exception.code, NormalizeError.ID_MISMATCH)

    def test_bad_canonical_timestamp(self):
        with self.assertRaises(NormalizeError) as cm:
            normalize(ObjectClass.FILE, parse("file-F1"), _file_payload(modified="last tuesday"))
        self.assertEqual(cm.exception.code, NormalizeError.BAD_TIMESTAMP)

    def test_bad_context_reference(self):
        with self.assertRaises(NormalizeError) as cm:
            normalize(ObjectClass.FILE, parse("file-F1"), _file_payload(project="not an id"))
        self.assertEqual(cm.exception.code, NormalizeError.BAD_REFERENCE)

    def test_project_qualified_request_normalizes_to_bare_id(self):
        d = normalize(ObjectClass.FILE, parse("project-P1:file-F1"), _file_payload())
        self.assertEqual(str(d.id), "file-F1")
        self.assertIsNone(d.id.project)

    def test_job_references_and_timestamps(self):
        d = normalize(ObjectClass.JOB, parse("job-J1"), _job_payload())

        self.assertEqual(d.context, parse("project-P1"))
        self.assertEqual(
            [str(r) for r in d.references],
            [
                "job-J1",
                "analysis-A1",
                "applet-X1",
                "job-J0",
                "container-C1",
                "file-F1",
                "file-F9",
            ],
        )
        self.assertEqual(
            d.properties["startedRunning"],
            datetime(2023, 11, 14, 22, 14, 20, tzinfo=timezone.utc),
        )
        self.assertIsNone(d.properties["stoppedRunning"])
        self.assertEqual(d.properties["runInput"]["label"], "file-NOTALINK")

    def test_analysis_stage_executions_are_references(self):
        raw = {
            "id": "analysis-A1",
            "class": "analysis",
            "name": "pipeline",
            "project": "project-P1",
            "workflow": {"id": "workflow-W1", "name": "wf"},
            "stages": [
                {"id": "stage-S1", "execution": {"id": "job-J1", "executable": "applet-X1"}},
                {"id": "stage-S2", "execution": {"id": "job-J2"}},
            ],
            "state": "done",
        }
        d = normalize(ObjectClass.ANALYSIS, parse("analysis-A1"), raw)
        self.assertEqual([str(r) for r in d.references], ["job-J1", "applet-X1", "job-J2"])
        self.assertEqual(d.state, "done")

    def test_app_has_no_context_and_keeps_project_like_fields(self):
        raw = {
            "id": "app-A1",
            "class": "app",
            "name": "bwa",
            "applet": "applet-X1",
            "published": "2023-01-02T03:04:05Z",
            "runSpec": {
                "interpreter": "bash",
                "bundledDepends": [{"name": "bwa.tar.gz", "id": {"$dnanexus_link": "file-B1"}}],
                "code": "file-NOTALINK",
            },
        }
        d = normalize(ObjectClass.APP, parse("app-A1"), raw)
        self.assertIsNone(d.context)
        self.assertEqual([str(r) for r in d.references], ["applet-X1", "file-B1"])
        self.assertEqual(d.properties["published"], datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc))

    def test_project_and_container(self):
        project = normalize(
            ObjectClass.PROJECT,
            parse("project-P1"),
            {"id": "project-P1", "class": "project", "name": "demo", "billTo": "org-lab", "level": "ADMINISTER"},
        )
        self.assertIsNone(project.context)
        self.assertEqual(project.properties["billTo"], "org-lab")

        container = normalize(
            ObjectClass.CONTAINER,
            parse("container-C1"),
            {"id": "container-C1", "class": "container", "app": "app-A1", "project": "project-P1"},
        )
        self.assertIsNone(container.context)
        self.assertEqual(container.references, (parse("app-A1"),))
        self.assertEqual(container.properties["project"], "project-P1")

    def test_descriptor_properties_are_read_only(self):
        d = normalize(ObjectClass.FILE, parse("file-F1"), _file_payload())
        with self.assertRaises(TypeError):
            d.properties["folder"] = "/elsewhere"


if __name__ == "__main__":
    unittest.main()
