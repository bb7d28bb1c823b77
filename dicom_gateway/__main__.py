from dicom_gateway.main import run

run()
