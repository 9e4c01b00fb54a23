"""Tests for CsvSourceAdapter (files and pasted text)."""

from stipend_ingestion.adapters import CsvSourceAdapter, SourceAdapter, is_workbook


class TestReadText:

    def test_header_rows(self):
        text = "ClinicName,StipendCap\nClinic A,10000\nClinic B,5000\n"
        rows = list(CsvSourceAdapter().read_text(text))
        assert rows == [
            {"ClinicName": "Clinic A", "StipendCap": "10000"},
            {"ClinicName": "Clinic B", "StipendCap": "5000"},
        ]

    def test_tab_delimited_with_bom_and_blank_lines(self):
        text = "\ufeffClinicName\tStipendCap\n\nClinic A\t1,250.00\n   \n"
        rows = list(CsvSourceAdapter().read_text(text, {"delimiter": "\t"}))
        assert rows == [{"ClinicName": "Clinic A", "StipendCap": "1,250.00"}]

    def test_quoted_commas(self):
        text = 'ClinicName,StipendCap\n"Smith, Jones & Co","$2,000"\n'
        [row] = CsvSourceAdapter().read_text(text)
        assert row == {"ClinicName": "Smith, Jones & Co", "StipendCap": "$2,000"}

    def test_without_header(self):
        text = "Clinic A,10000\n"
        [row] = CsvSourceAdapter().read_text(
            text, {"has_header": False, "columns": ["ClinicName", "StipendCap"]}
        )
        assert row == {"ClinicName": "Clinic A", "StipendCap": "10000"}

    def test_without_header_generated_names(self):
        [row] = CsvSourceAdapter().read_text("a,b\n", {"has_header": False})
        assert row == {"field_0": "a", "field_1": "b"}

    def test_long_rows_drop_overflow(self):
        [row] = CsvSourceAdapter().read_text("ClinicName\nClinic A,extra\n")
        assert row == {"ClinicName": "Clinic A"}


class TestFiles:

    def test_read_and_probe(self, tmp_path):
        path = tmp_path / "metrics.csv"
        path.write_text(
            "title line\nClinicName,StipendCap\n"
            + "".join(f"Clinic {i},{i * 100}\n" for i in range(7)),
            encoding="utf-8",
        )
        adapter = CsvSourceAdapter()
        options = {"skip_rows": 1}

        rows = list(adapter.read(path, options))
        probe = adapter.probe(path, options)

        assert len(rows) == 7
        assert rows[3] == {"ClinicName": "Clinic 3", "StipendCap": "300"}
        assert probe.row_count == 7
        assert probe.columns == ("ClinicName", "StipendCap")
        assert len(probe.sample_rows) == 5
        assert probe.encoding == "utf-8-sig"

    def test_satisfies_protocol(self):
        assert isinstance(CsvSourceAdapter(), SourceAdapter)

    def test_workbook_suffixes(self, tmp_path):
        assert is_workbook(tmp_path / "metrics.XLSX")
        assert is_workbook(tmp_path / "metrics.xlsm")
        assert not is_workbook(tmp_path / "metrics.csv")
        assert not is_workbook(tmp_path / "metrics.txt")
