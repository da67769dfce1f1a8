import threading

from specflow.data.mopac import EnergyRecord
from specflow.qc.storage import BatchLedger, CsvTable


def test_concurrent_appends_keep_one_header(tmp_path):
    table = CsvTable(tmp_path / "rows.csv", ["worker", "item"])

    def writer(worker):
        for item in range(50):
            table.append({"worker": worker, "item": item})

    threads = [threading.Thread(target=writer, args=(w,)) for w in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    rows = table.read()
    assert len(rows) == 200
    assert (tmp_path / "rows.csv").read_text(encoding="utf-8").count("worker,item") == 1


def test_reset_starts_a_new_file(tmp_path):
    table = CsvTable(tmp_path / "rows.csv", ["a"])
    table.append({"a": 1})
    table.reset()
    assert table.read() == []
    table.append({"a": 2})
    assert table.read() == [{"a": "2"}]


def test_energy_table_marks_selected_frame(tmp_path):
    ledger = BatchLedger(tmp_path)
    records = [EnergyRecord(3, -39.9), EnergyRecord(1, -40.2), EnergyRecord(2, -41.5)]
    ledger.record_energies(records, records[2])
    rows = ledger.energies.read()
    assert [row["frame_index"] for row in rows] == ["1", "2", "3"]
    assert [row["selected"] for row in rows] == ["0", "1", "0"]
    assert rows[1]["energy"] == "-41.50000"
