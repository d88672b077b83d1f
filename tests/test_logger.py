import json

from scenicwalk.logger import Logger


def test_log_line_format(capsys):
    Logger().log("Published location", {"lat": 1.5, "lng": 2.5})
    line = capsys.readouterr().out.strip()
    assert line.startswith("[")
    message, data = line.split("] ", 1)[1].split(" | ")
    assert message == "Published location"
    assert json.loads(data) == {"lat": 1.5, "lng": 2.5}


def test_log_file_and_callback(tmp_path, capsys):
    seen = []
    path = tmp_path / "walk.log"
    logger = Logger(str(path), callback=lambda m, d: seen.append((m, d)), echo=False)
    logger.log("Session state", {"state": "active"})
    logger.log("Cleared location")
    logger.close()

    text = path.read_text()
    assert "Scenic Walk Log" in text
    assert 'Session state | {"state": "active"}' in text
    assert "Cleared location\n" in text
    assert seen == [("Session state", {"state": "active"}), ("Cleared location", None)]
    assert capsys.readouterr().out == ""
