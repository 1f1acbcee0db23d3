from cells_lsp.server import main

if __name__ == "__main__":
    main()
