from triage_dispatch import demo


def test_demo_walkthrough_prints_dispatch_and_cancellation(capsys) -> None:
    demo.main()

    out = capsys.readouterr().out
    assert "Severity: critical | Category: cardiac" in out
    assert "Unit: MICU-3 (CriticalCare)" in out
    assert "Case cancelled: false alarm" in out
