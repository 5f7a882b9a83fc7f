"""HTTP routers. Each router is a thin shell over one flow."""
