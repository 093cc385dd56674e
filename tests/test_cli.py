import json

from stereotrack.api.model_io import load_camera_system, load_matches
from stereotrack.cli.main import main


def test_cli_generate_calibrate_associate_describe(tmp_path, capsys):
    scene = tmp_path / "scene"
    assert main(["generate-synthetic", "--out", str(scene), "--subjects", "2", "--seed", "4"]) == 0
    for name in ("config.json", "tracks1.json", "tracks2.json", "ground_truth.json"):
        assert (scene / name).exists()

    system_path = tmp_path / "camera_system.json"
    rc = main(
        [
            "calibrate",
            "--config", str(scene / "config.json"),
            "--tracks1", str(scene / "tracks1.json"),
            "--tracks2", str(scene / "tracks2.json"),
            "--ref", "0", "0",
            "--ntrials", "20",
            "--out", str(system_path),
        ]
    )
    assert rc == 0
    system = load_camera_system(system_path)
    assert system.settings.ntrials == 20
    assert system.settings.z0 == 1.0

    matches_path = tmp_path / "matches.json"
    rc = main(
        [
            "associate",
            "--system", str(system_path),
            "--tracks1", str(scene / "tracks1.json"),
            "--tracks2", str(scene / "tracks2.json"),
            "--out", str(matches_path),
        ]
    )
    assert rc == 0
    matches = load_matches(matches_path)
    assert len({m.i for m in matches}) == len(matches)
    assert len({m.j for m in matches}) == len(matches)

    capsys.readouterr()
    assert main(["describe", str(system_path)]) == 0
    cams = json.loads(capsys.readouterr().out)
    assert [c["camera"] for c in cams] == [1, 2]
    assert cams[1]["position"] == [24.0, 6.0, 0.0]


def test_cli_reports_malformed_system(tmp_path):
    path = tmp_path / "cs.json"
    path.write_text("{}", encoding="utf-8")
    assert main(["describe", str(path)]) == 1


def test_cli_reports_bad_calibrate_arguments(tmp_path):
    scene = tmp_path / "scene"
    assert main(["generate-synthetic", "--out", str(scene), "--subjects", "1"]) == 0
    base = [
        "calibrate",
        "--config", str(scene / "config.json"),
        "--tracks1", str(scene / "tracks1.json"),
        "--tracks2", str(scene / "tracks2.json"),
        "--out", str(tmp_path / "camera_system.json"),
    ]
    assert main(base + ["--ref", "5", "0", "--ntrials", "5"]) == 1
    assert main(base + ["--ntrials", "0"]) == 1
    assert not (tmp_path / "camera_system.json").exists()
