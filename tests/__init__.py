"""
dbfixture Test Suite

Test categories:
- test_models.py, test_parser.py, test_scenario.py, test_merger.py - dataset model and loading
- test_ordering.py, test_binder.py, test_operations.py - writing datasets to the database
- test_comparison.py, test_expectation.py - verification and diff reports
- test_loader.py, test_config.py, test_registry.py, test_tester.py - configuration and end-to-end flow
"""
