from offerbot.main import run

run()
