from batteryview.main import run

run()
