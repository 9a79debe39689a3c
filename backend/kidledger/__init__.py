"""Household kid ledger: balances, allowances, savings interest and loans."""
