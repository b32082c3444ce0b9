from src.engine.cli import main

main()
