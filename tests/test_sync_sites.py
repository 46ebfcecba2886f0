import json

import pytest

from agent_layer.jobs import sync_sites


@pytest.fixture
def patched_layer(monkeypatch, settings, layer):
    monkeypatch.setattr(sync_sites, "get_settings", lambda: settings)
    monkeypatch.setattr(sync_sites, "build_layer", lambda _settings: layer)
    return layer


def test_build_parser_defaults():
    args = sync_sites.build_parser().parse_args([])

    assert args.sites is None
    assert args.list_only is False
    assert args.json_files == []
    assert args.json_vertical is None


def test_build_parser_repeatable_sites():
    args = sync_sites.build_parser().parse_args(["--site", "abcontrol", "--site", "albertaclinics"])

    assert args.sites == ["abcontrol", "albertaclinics"]


def test_list_prints_connectors(patched_layer, capsys):
    assert sync_sites.main(["--list"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines == ["edmontonplayground\tplayground", "albertaclinics\tclinic", "abcontrol\tindustrial"]


def test_main_syncs_selected_site(patched_layer):
    assert sync_sites.main(["--site", "abcontrol"]) == 0

    assert patched_layer.store.count_places_by_vertical() == {"industrial": 3}


def test_main_returns_error_for_unknown_site(patched_layer):
    assert sync_sites.main(["--site", "nowhere"]) == 1


def test_json_file_requires_vertical(patched_layer, tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        sync_sites.main(["--json-file", str(tmp_path / "extra.json")])

    assert excinfo.value.code == 2


def test_json_file_is_synced_as_its_own_site(patched_layer, tmp_path):
    path = tmp_path / "banffhotels.json"
    path.write_text(json.dumps([{"id": "h1", "name": "Mountain Lodge", "city": "Banff"}]), encoding="utf-8")

    results = sync_sites.run_sync(["banffhotels"], [str(path)], "travel")

    assert [(result.site_id, result.created) for result in results] == [("banffhotels", 1)]
    assert patched_layer.store.find_by_site_ref("banffhotels", "h1").vertical == "travel"
