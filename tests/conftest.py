import pytest

SALES_CSV = """region,product,revenue,order_date
North,Widget,1200,2024-01-05
North,Gadget,800,2024-01-20
South,Widget,300,2024-02-03
South,Gizmo,450,2024-02-18
East,Gadget,2000,2024-03-01
East,Widget,150,2024-03-15
West,Gizmo,700,2024-03-28
"""


@pytest.fixture
def sales_csv(tmp_path):
    path = tmp_path / 'sales.csv'
    path.write_text(SALES_CSV)
    return str(path)
