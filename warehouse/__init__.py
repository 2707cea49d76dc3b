"""Warehouse service: inventory, locations, stock movements and deliveries."""
