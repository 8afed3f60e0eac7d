from dataset_ingest.training.runner import main

if __name__ == "__main__":
    main()
