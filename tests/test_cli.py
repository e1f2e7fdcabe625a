import json

import planforge_cli


def test_settings_command_prints_masked_settings(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("PLANFORGE_ENV_OVERRIDES_CONFIG", raising=False)
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "premium_endpoint": {"base_url": "http://cloud.test/v1", "model_id": "big", "api_key": "sk-secret"},
                "max_iterations": 4,
            }
        )
    )
    code = planforge_cli.main(
        ["--config", str(config_path), "--workspace", str(tmp_path / "ws"), "--log-level", "WARNING", "settings"]
    )
    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["max_iterations"] == 4
    assert data["workspace_root"] == str(tmp_path / "ws")
    assert data["premium_endpoint"]["api_key"] == "********"


def test_missing_command_prints_help(capsys):
    assert planforge_cli.main([]) == 1
    assert "PlanForge CLI" in capsys.readouterr().out
